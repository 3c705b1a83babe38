from pydantic import BaseModel


class ProgressUpdate(BaseModel):
    progress: float
