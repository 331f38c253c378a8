from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

# Each record maps to one collection: products, orders, banners


class ProductIn(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    id: str
    name: str
    price: float = Field(ge=0)
    discount: float = Field(ge=0, default=0)
    category: str
    mostSell: bool = False
    available: bool = False
    colors: list[str] = Field(default_factory=list)
    sizes: list[str] = Field(default_factory=list)
    description: str = ""


class CartItem(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, allow_inf_nan=False)

    name: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)
    selectedColor: Optional[str] = None
    selectedSize: Optional[str] = None
    image: Optional[str] = None


class OrderIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True, allow_inf_nan=False)

    orderId: str
    name: str
    contact: str
    city: str
    houseNo: str
    Block: str
    Area: str
    landmark: str
    paymentMethod: str
    cartItems: list[CartItem] = Field(min_length=1)
    totalAmount: float = Field(ge=0)


class BannerIn(BaseModel):
    link: str = ""
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class LoginRequest(BaseModel):
    username: str
    password: str
