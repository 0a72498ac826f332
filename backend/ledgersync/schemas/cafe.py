"""
Cafe Schemas
"""
from pydantic import BaseModel, ConfigDict


class CafeCredentials(BaseModel):
    """A cafe location with its decrypted iCafeCloud credentials"""
    model_config = ConfigDict(frozen=True)

    location_id: int
    account_id: int
    name: str
    cafe_id: str
    api_key: str

    def __repr__(self):
        return f"<CafeCredentials {self.name} ({self.cafe_id})>"
