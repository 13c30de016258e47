"""
Database Schemas for the Catalog API

Each Pydantic model represents a collection in MongoDB, or the payload that
creates/updates one. The collection name is the lowercase of the entity name
(e.g., Product -> "product").
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Dict, List, Optional


class ImageDescriptor(BaseModel):
    url: str
    provider_id: Optional[str] = None
    alt: Optional[str] = None


class Feature(BaseModel):
    name: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)


class Discount(BaseModel):
    percentage: float = Field(0, ge=0, le=100, description="Discount in percent")
    discounted_price: Optional[float] = Field(None, ge=0, description="Derived from price and percentage")


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., min_length=2, max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    role: str = Field("user", description="Role: user | admin")
    is_active: bool = Field(True, description="Whether user is active")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"

    rating and num_reviews are derived from the review collection and are
    never taken from a request payload.
    """
    name: str = Field(..., min_length=3, max_length=200, description="Product name")
    description: str = Field(..., min_length=10, description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    category: str = Field(..., description="Category id")
    stock: int = Field(0, ge=0, description="Units in stock")
    sku: Optional[str] = Field(None, description="Stock keeping unit, unique when set")
    brand: Optional[str] = None
    images: List[ImageDescriptor] = Field(default_factory=list)
    features: List[Feature] = Field(default_factory=list)
    specifications: Dict[str, str] = Field(default_factory=dict)
    is_active: bool = Field(True, description="Whether product is listed")
    discount: Optional[Discount] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    brand: Optional[str] = None
    features: Optional[List[Feature]] = None
    specifications: Optional[Dict[str, str]] = None
    is_active: Optional[bool] = None
    discount: Optional[Discount] = None


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    operation: str = Field(..., description="add, subtract or set")


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"
    """
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    parent_category: Optional[str] = Field(None, description="Parent category id, null for a root")
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    parent_category: Optional[str] = None
    is_active: Optional[bool] = None


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review"
    One review per (product, user) pair.
    """
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., min_length=10, max_length=1000)
    is_verified_purchase: bool = False


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, min_length=10, max_length=1000)
