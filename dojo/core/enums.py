from enum import Enum


class DiscountEventType(str, Enum):
    STUDENT_ENROLLMENT = "student_enrollment"
    FIRST_PAYMENT = "first_payment"
    BELT_PROMOTION = "belt_promotion"
    ATTENDANCE_MILESTONE = "attendance_milestone"
    FAMILY_REFERRAL = "family_referral"
    BIRTHDAY = "birthday"
    SEASONAL_PROMOTION = "seasonal_promotion"


class DiscountType(str, Enum):
    FIXED_AMOUNT = "fixed_amount"
    PERCENTAGE = "percentage"


class UsageType(str, Enum):
    ONE_TIME = "one_time"
    ONGOING = "ongoing"


class DiscountScope(str, Enum):
    PER_STUDENT = "per_student"
    PER_FAMILY = "per_family"


class PaymentType(str, Enum):
    MONTHLY_GROUP = "monthly_group"
    YEARLY_GROUP = "yearly_group"
    INDIVIDUAL_SESSION = "individual_session"
    STORE_PURCHASE = "store_purchase"
    EVENT_REGISTRATION = "event_registration"
    OTHER = "other"


class PaymentStatus(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class InvoiceItemType(str, Enum):
    CLASS_ENROLLMENT = "class_enrollment"
    INDIVIDUAL_SESSION = "individual_session"
    PRODUCT = "product"
    FEE = "fee"
    DISCOUNT = "discount"
    OTHER = "other"


class InvoiceStatus(str, Enum):
    draft = "draft"
    sent = "sent"
    viewed = "viewed"
    paid = "paid"
    partially_paid = "partially_paid"
    overdue = "overdue"
    cancelled = "cancelled"
