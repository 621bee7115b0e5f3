from pydantic import BaseModel, computed_field

CURRENCY_SYMBOLS = {"INR": "₹"}


class Plan(BaseModel):
    planId: str
    amount: int  # paise
    currency: str
    description: str
    duration: int  # days

    class Config:
        frozen = True

    @computed_field
    @property
    def formattedAmount(self) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency, f"{self.currency} ")
        return f"{symbol}{self.amount / 100:.2f}"
