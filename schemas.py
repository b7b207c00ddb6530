"""
Database Schemas

Each Pydantic model represents a MongoDB collection. The collection name is
the lowercase of the class name (e.g. WeddingRing -> "weddingring").
Document keys are camelCase, matching what the storefront sends and reads.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"
    REFUNDED = "refunded"


class MetalColor(str, Enum):
    ROSE_GOLD = "Rose Gold"
    TWO_TONE_GOLD = "Two Tone Gold"
    WHITE_GOLD = "White Gold"
    YELLOW_GOLD = "Yellow Gold"
    PLATINUM = "Platinum"
    PALLADIUM = "Palladium"


METAL_KARATS = ["14K", "18K"]
FINISH_TYPES = ["Polished", "Matte", "Brushed", "Hammered"]


# ---------------------- Users ----------------------

class User(BaseModel):
    firstName: str = Field(..., description="First name")
    lastName: str = Field(..., description="Last name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    password: str = Field(..., description="BCrypt hashed password")
    phoneNumber: Optional[str] = None
    role: Role = Role.USER
    refreshToken: Optional[str] = None
    loginAttempts: int = 0
    lockUntil: Optional[datetime] = None
    isActive: bool = True
    lastLogin: Optional[datetime] = None
    passwordResetToken: Optional[str] = Field(None, description="SHA-256 of the pending reset token")
    passwordResetExpires: Optional[datetime] = None


# ---------------------- Media ----------------------

class Image(BaseModel):
    url: str
    publicId: str


class Media(BaseModel):
    images: List[Image] = Field(default_factory=list)
    video: Optional[Image] = None


# ---------------------- Catalog ----------------------

class CatalogItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    slug: Optional[str] = None
    description: Optional[str] = None
    media: Media = Field(default_factory=Media)


class MetalOption(BaseModel):
    karat: str
    color: MetalColor
    price: float = Field(..., ge=0)
    finish_type: Optional[str] = None
    isDefault: bool = False

    @field_validator("karat")
    @classmethod
    def check_karat(cls, value: str) -> str:
        if value not in METAL_KARATS:
            raise ValueError(f"karat must be one of {', '.join(METAL_KARATS)}")
        return value

    @field_validator("finish_type")
    @classmethod
    def check_finish(cls, value: Optional[str]) -> Optional[str]:
        if value and value not in FINISH_TYPES:
            raise ValueError("Invalid finish type")
        return value or None


class RingBase(CatalogItem):
    title: str
    SKU: str
    basePrice: float = Field(..., ge=0)
    style: List[str] = Field(default_factory=list)
    type: List[str] = Field(default_factory=list)
    metalOptions: List[MetalOption] = Field(..., min_length=1)
    metalColorImages: Dict[MetalColor, List[Image]] = Field(default_factory=dict)
    isActive: bool = True
    isFeatured: bool = False


class Setting(RingBase):
    compatibleStoneShapes: List[str] = Field(default_factory=list)
    canAcceptStone: bool = True
    settingHeight: Optional[float] = None
    bandWidth: Optional[float] = None


class WeddingRing(RingBase):
    subcategory: str


class EngagementRing(RingBase):
    main_stone: Optional[dict] = None


class Diamond(CatalogItem):
    title: str
    SKU: str
    type: str = Field(..., description="natural | lab")
    shape: str
    carat: float = Field(..., gt=0)
    color: str
    clarity: str
    cut: Optional[str] = None
    polish: Optional[str] = None
    symmetry: Optional[str] = None
    fluorescence: Optional[str] = None
    fancyColor: Optional[str] = None
    price: float = Field(..., ge=0)
    salePrice: Optional[float] = Field(None, ge=0)
    certificate: Optional[dict] = None
    isActive: bool = True


class Gemstone(CatalogItem):
    sku: str
    type: str
    source: str = Field(..., description="natural | lab")
    carat: float = Field(..., gt=0)
    shape: str
    color: str
    clarity: Optional[str] = None
    cut: Optional[str] = None
    origin: Optional[str] = None
    treatment: Optional[str] = None
    price: float = Field(..., ge=0)
    salePrice: Optional[float] = Field(None, ge=0)
    isAvailable: bool = True


class FineJewelry(CatalogItem):
    name: str
    sku: str
    type: str
    metal: str
    style: Optional[str] = None
    price: float = Field(..., ge=0)
    salePrice: Optional[float] = Field(None, ge=0)
    images: List[Image] = Field(default_factory=list)
    isAvailable: bool = True


class Bracelet(FineJewelry):
    length: Optional[float] = None


class Earring(FineJewelry):
    backType: Optional[str] = None


class Necklace(FineJewelry):
    length: Optional[float] = None


class MensJewelry(FineJewelry):
    finish: Optional[str] = None
    size: Optional[str] = None
    width: Optional[float] = None


# ---------------------- Cart / Orders ----------------------

class Stone(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    carat: float
    color: str
    clarity: str
    gemstoneType: Optional[str] = None
    image: Optional[str] = None


class SettingChoice(BaseModel):
    style: Optional[str] = None
    metalType: Optional[str] = None
    settingType: Optional[str] = None


class CustomizationDetails(BaseModel):
    stone: Optional[Stone] = None
    setting: Optional[SettingChoice] = None


class Customization(BaseModel):
    isCustomized: bool = False
    customizationType: Optional[str] = Field(None, pattern="^(setting-diamond|setting-gemstone|preset)$")
    settingId: Optional[str] = None
    diamondId: Optional[str] = None
    gemstoneId: Optional[str] = None
    metalType: Optional[str] = None
    size: Optional[float] = None
    customizationDetails: Optional[CustomizationDetails] = None


class SelectedMetal(BaseModel):
    karat: Optional[str] = None
    color: Optional[str] = None


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="_id")
    cartItemId: Optional[str] = None
    title: str = ""
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    productType: Optional[str] = None
    metalOption: Optional[SelectedMetal] = None
    size: Optional[float] = None
    customization: Optional[Customization] = None

    @property
    def is_customized(self) -> bool:
        return bool(self.customization and self.customization.isCustomized)


class OrderItem(BaseModel):
    productId: Optional[str] = None
    productType: Optional[str] = None
    title: str
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    size: Optional[float] = None
    metalOption: Optional[SelectedMetal] = None
    customization: Optional[Customization] = None


class ShippingAddress(BaseModel):
    firstName: str
    lastName: str
    email: EmailStr
    phone: str
    address: str
    city: str
    state: str
    zipCode: str
    country: str = "US"


class BillingAddress(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class PaymentInfo(BaseModel):
    """Redacted payment summary. Anything else the client sends is dropped."""
    paymentMethod: str = Field("stripe", pattern="^(stripe|paypal|bank_transfer)$")
    stripePaymentIntentId: Optional[str] = None
    stripePaymentMethodId: Optional[str] = None
    cardLastFour: Optional[str] = Field(None, max_length=4)
    cardBrand: Optional[str] = None
    cardExpMonth: Optional[int] = None
    cardExpYear: Optional[int] = None
    billingAddress: Optional[BillingAddress] = None


class Pricing(BaseModel):
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    shippingMethod: str = Field(..., pattern="^(standard|express|overnight)$")


class Order(BaseModel):
    orderNumber: str
    userId: Optional[str] = None
    customerEmail: EmailStr
    items: List[OrderItem] = Field(..., min_length=1)
    shippingAddress: ShippingAddress
    paymentInfo: PaymentInfo
    pricing: Pricing
    status: OrderStatus = OrderStatus.PENDING
    paymentStatus: PaymentStatus = PaymentStatus.PENDING
    trackingNumber: Optional[str] = None
    estimatedDelivery: Optional[datetime] = None
    notes: Optional[str] = None
