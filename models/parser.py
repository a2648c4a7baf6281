from pydantic import BaseModel

class Parser(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True
