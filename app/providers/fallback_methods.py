"""Static payment methods served when a gateway cannot list its own."""

from __future__ import annotations

from decimal import Decimal

from .base import AvailablePaymentMethods, ProviderPaymentMethod

# (id, code, English name, Arabic name, direct payment)
STATIC_PAYMENT_METHODS: tuple[tuple[int, str, str, str, bool], ...] = (
    (1, "KNET", "KNET", "كي نت", False),
    (2, "VISA", "VISA/MASTER", "فيزا / ماستر", False),
    (3, "AMEX", "AMEX", "اميكس", False),
    (4, "BENEFIT", "Benefit", "بنفت", False),
    (5, "MADA", "MADA", "مدى", False),
    (6, "UAE_DEBIT", "UAE Debit Cards", "كروت الدفع المدينة (الامارات)", False),
    (7, "QATAR_DEBIT", "Qatar Debit Cards", "كروت الدفع المدينة (قطر)", False),
    (8, "APPLE_PAY", "Apple Pay", "ابل باي", True),
    (9, "GOOGLE_PAY", "Google Pay", "جوجل باي", True),
    (10, "STC_PAY", "STC Pay", "STC Pay", False),
    (11, "OMAN_NET", "Oman Net", "عمان نت", False),
    (12, "MOBILE_WALLET_EGYPT", "Mobile Wallet (Egypt)", "محفظة إلكترونية (مصر)", False),
    (13, "MEEZA", "Meeza", "ميزة", False),
)


def fallback_payment_methods(amount: Decimal, currency: str, provider_label: str) -> AvailablePaymentMethods:
    note = f"Service charges not available. {provider_label} API is not configured or unavailable."
    methods = [
        ProviderPaymentMethod(
            id=method_id,
            code=code,
            name_en=name_en,
            name_ar=name_ar,
            is_direct_payment=direct,
            service_charge=Decimal("0"),
            total_amount=amount,
            currency=currency,
            note=note,
        )
        for method_id, code, name_en, name_ar, direct in STATIC_PAYMENT_METHODS
    ]
    return AvailablePaymentMethods(
        payment_methods=methods,
        invoice_amount=amount,
        currency=currency,
        fallback=True,
        message=f"Payment methods retrieved from static list. {provider_label} API is not available.",
    )
