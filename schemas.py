"""
Database Schemas for the Storefront

Each collection model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Request bodies accept the client's camelCase names as aliases.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

PaymentMethod = Literal["cash", "gpay", "paytm", "card"]
OrderStatus = Literal["Pending", "Processing", "Completed", "Cancelled"]

# payment methods that settle through a UPI handle
UPI_METHODS = ("gpay", "paytm")

# largest quantity a single cart line may hold
MAX_CART_QUANTITY = 1000


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    is_admin: bool = False
    # bumped on every cart write; cart and wishlist themselves are created lazily
    cart_version: int = 0


class Product(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0, le=100, description="Discount percentage")
    stock: int = Field(0, ge=0)
    category: str
    image: Optional[str] = None


class OrderProductSnapshot(BaseModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class Order(BaseModel):
    user_id: str
    products: List[OrderProductSnapshot]
    total_amount: float
    shipping_address: str
    payment_method: PaymentMethod
    upi_id: Optional[str] = None
    status: OrderStatus = "Processing"
    expected_delivery: datetime


# ----------------------- Request bodies -----------------------
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SignupBody(_Body):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(_Body):
    email: EmailStr
    password: str


class ProfileUpdateBody(_Body):
    name: Optional[str] = None
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    gender: Optional[Literal["male", "female", "other"]] = None
    dob: Optional[datetime] = None
    address: Optional[str] = None

    @field_validator("gender", mode="before")
    @classmethod
    def lower_gender(cls, v):
        return v.lower() if isinstance(v, str) else v


class CartAddBody(_Body):
    product_id: str = Field(..., alias="productId")
    quantity: int = Field(1, ge=1, le=MAX_CART_QUANTITY)


class CartQuantityBody(_Body):
    quantity: int = Field(..., ge=1, le=MAX_CART_QUANTITY)


class WishlistBody(_Body):
    product_id: str = Field(..., alias="productId")


class PlaceOrderBody(_Body):
    address: str = Field(..., min_length=1)
    payment_type: PaymentMethod = Field(..., alias="paymentType")
    upi_id: Optional[str] = Field(None, alias="upiId")

    @model_validator(mode="after")
    def upi_required_for_upi_methods(self):
        if self.payment_type in UPI_METHODS and not (self.upi_id or "").strip():
            raise ValueError(f"upiId is required for {self.payment_type}")
        return self
