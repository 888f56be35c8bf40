from dojo.core.models.family import Family
from dojo.core.models.student import Student
from dojo.core.models.program import DojoClass, Program
from dojo.core.models.enrollment import Enrollment
from dojo.core.models.attendance import Attendance
from dojo.core.models.belt_award import BeltAward
from dojo.core.models.tax_rate import TaxRate
from dojo.core.models.discount_template import DiscountTemplate
from dojo.core.models.discount_code import DiscountCode, DiscountCodeUsage
from dojo.core.models.payment import Payment
from dojo.core.models.discount_automation import (
    AutomationRuleDiscountTemplate,
    DiscountAssignment,
    DiscountAutomationRule,
    DiscountEvent,
)
from dojo.core.models.invoice import Invoice, InvoiceLineItem, InvoiceLineItemTax

__all__ = [
    "Attendance",
    "AutomationRuleDiscountTemplate",
    "BeltAward",
    "DiscountAssignment",
    "DiscountAutomationRule",
    "DiscountCode",
    "DiscountCodeUsage",
    "DiscountEvent",
    "DiscountTemplate",
    "DojoClass",
    "Enrollment",
    "Family",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceLineItemTax",
    "Payment",
    "Program",
    "Student",
    "TaxRate",
]
