from typing import Dict, Optional

PROTOCOL_VERSION = "1.0"

ERROR_CODES: Dict[str, int] = {
    "ERROR": 1,
    "INVALID_INPUT": 2,
    "NOT_FOUND": 3,
    "SOURCE_READ_ERROR": 4,
    "WRITE_ERROR": 5,
    "STAT_ERROR": 6,
}


class ManipulateError(Exception):
    def __init__(self, code: str, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.stage = stage

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"code": self.code, "message": self.message, "stage": self.stage}
