"""
Database Schemas

MongoDB collection schemas as Pydantic models. Each model validates a
request body before it reaches the ``products``, ``carts`` or ``users``
collection.
"""

import math
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator, model_validator


class ProductImage(BaseModel):
    url: str
    publicId: str


class SizeOption(BaseModel):
    label: str
    badge: Optional[str] = None


def _coerce_price(v):
    # prices are stored as strings; numbers from older clients are accepted
    if isinstance(v, bool):
        raise ValueError("price must be a string or number")
    if isinstance(v, (int, float)):
        if not math.isfinite(v):
            raise ValueError("price must be a finite number")
        return str(v)
    return v


def _check_color_images(images_by_color: Dict[str, list], colors: List[str]):
    unknown = sorted(set(images_by_color) - set(colors))
    if unknown:
        raise ValueError(f"imagesByColor has colors not listed in colors: {', '.join(unknown)}")


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: str = Field(..., min_length=1, description="Price as displayed, e.g. '49.99'")
    defaultImage: Optional[ProductImage] = None
    imagesByColor: Dict[str, List[ProductImage]] = Field(default_factory=dict)
    colors: List[str] = Field(default_factory=list)
    sizes: List[Union[str, SizeOption]] = Field(default_factory=list)
    badge: Optional[str] = None
    justIn: bool = False
    published: bool = False

    @field_validator("price", mode="before")
    @classmethod
    def price_as_string(cls, v):
        return _coerce_price(v)

    @model_validator(mode="after")
    def color_images_match_colors(self):
        _check_color_images(self.imagesByColor, self.colors)
        return self


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[str] = Field(None, min_length=1)
    defaultImage: Optional[ProductImage] = None
    imagesByColor: Optional[Dict[str, List[ProductImage]]] = None
    colors: Optional[List[str]] = None
    sizes: Optional[List[Union[str, SizeOption]]] = None
    badge: Optional[str] = None
    justIn: Optional[bool] = None
    published: Optional[bool] = None

    @field_validator("price", mode="before")
    @classmethod
    def price_as_string(cls, v):
        return v if v is None else _coerce_price(v)

    @field_validator("name", "price")
    @classmethod
    def required_fields_not_null(cls, v):
        if v is None:
            raise ValueError("field cannot be null")
        return v


class PublishToggle(BaseModel):
    published: StrictBool


class CartItem(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    productId: StrictStr
    name: StrictStr
    price: Union[StrictInt, StrictFloat]
    quantity: StrictInt = Field(..., ge=1)


class Cart(BaseModel):
    userId: StrictStr = Field(..., min_length=1)
    items: List[CartItem]


class User(BaseModel):
    uid: str
    email: EmailStr
    displayName: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    password: Optional[str] = Field(None, description="BCrypt hashed password")


class AdminLogin(BaseModel):
    username: str
    password: str
