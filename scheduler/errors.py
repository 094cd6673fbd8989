"""
Error taxonomy and bilingual message catalog.

Components raise these exceptions on fatal paths; the service facade turns
them into `ErrorPayload` envelopes. Business-rule violations travel as
`ValidationIssue` data and reuse the same catalog.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from models import ErrorPayload

logger = logging.getLogger(__name__)


# code -> (English, Arabic). Placeholders use str.format names.
MESSAGES: Dict[str, Tuple[str, str]] = {
    # --- Field checks ---
    "REQUIRED": ("{field} is required", "الحقل {field} مطلوب"),
    "INVALID_RANGE": ("End date must not be before start date",
                      "يجب ألا يسبق تاريخ الانتهاء تاريخ البدء"),
    "DATE_IN_PAST": ("Start date cannot be in the past", "لا يمكن أن يكون تاريخ البدء في الماضي"),
    "INSUFFICIENT_NOTICE": ("Freeze requests typically require {days} day(s) advance notice",
                            "تتطلب طلبات التجميد عادة إشعارا مسبقا بمدة {days} يوم"),
    "FREEZE_TOO_SHORT": ("Minimum freeze duration is {days} day(s)", "الحد الأدنى لمدة التجميد {days} يوم"),
    "FREEZE_TOO_LONG": ("Maximum freeze duration is {days} days per request",
                        "الحد الأقصى لمدة التجميد {days} يوما لكل طلب"),
    "REASON_TOO_SHORT": ("Reason must be at least {length} characters",
                         "يجب ألا يقل السبب عن {length} حرفا"),
    "REASON_TOO_LONG": ("Reason cannot exceed {length} characters", "يجب ألا يتجاوز السبب {length} حرفا"),

    # --- Subscription rules ---
    "SUBSCRIPTION_NOT_FOUND": ("Subscription {subscription_id} not found",
                               "الاشتراك {subscription_id} غير موجود"),
    "INVALID_SUBSCRIPTION_ID": ("Subscription id is malformed", "معرف الاشتراك غير صالح"),
    "BEYOND_SUBSCRIPTION": ("Freeze end date cannot be beyond subscription end date",
                            "لا يمكن أن يتجاوز تاريخ انتهاء التجميد تاريخ انتهاء الاشتراك"),
    "INVALID_STATUS": ("Only active subscriptions can be modified. Current status: {status}",
                       "يمكن تعديل الاشتراكات النشطة فقط. الحالة الحالية: {status}"),
    "SUBSCRIPTION_EXPIRED": ("Cannot modify an expired subscription", "لا يمكن تعديل اشتراك منتهي"),
    "INSUFFICIENT_FREEZE_DAYS": ("Insufficient freeze days. Available: {available}, Requested: {requested}",
                                 "أيام التجميد غير كافية. المتاح: {available}، المطلوب: {requested}"),
    "HIGH_UTILIZATION": ("This request will use {percent}% of the freeze allowance",
                         "سيستخدم هذا الطلب {percent}% من رصيد التجميد"),
    "ACTIVE_FREEZE_EXISTS": ("An active freeze already exists for this period",
                             "يوجد تجميد نشط بالفعل لهذه الفترة"),
    "SESSIONS_REQUIRE_RESCHEDULING": ("{count} scheduled session(s) will be rescheduled",
                                      "سيتم إعادة جدولة {count} جلسة مجدولة"),
    "NOT_FROZEN": ("Subscription is not currently frozen", "الاشتراك غير مجمد حاليا"),
    "PENDING_RESCHEDULES": ("{count} session(s) still need manual rescheduling",
                            "لا تزال {count} جلسة بحاجة إلى إعادة جدولة يدوية"),

    # --- Modification rules ---
    "THERAPIST_NOT_FOUND": ("Therapist {therapist_id} not found", "المعالج {therapist_id} غير موجود"),
    "SESSION_NOT_FOUND": ("Session {session_id} not found", "الجلسة {session_id} غير موجودة"),
    "SESSION_NOT_IN_SUBSCRIPTION": ("Session {session_id} does not belong to this subscription",
                                    "الجلسة {session_id} لا تنتمي لهذا الاشتراك"),
    "NO_FUTURE_SESSIONS": ("No upcoming sessions to modify", "لا توجد جلسات قادمة للتعديل"),
    "SCOPE_MISMATCH": ("Scope '{scope}' cannot carry program term changes",
                       "النطاق '{scope}' لا يسمح بتغيير شروط البرنامج"),
    "NO_CHANGES": ("The request does not change anything", "الطلب لا يتضمن أي تغيير"),
    "SAME_THERAPIST": ("Sessions are already assigned to this therapist",
                       "الجلسات مسندة بالفعل إلى هذا المعالج"),
    "INVALID_VALUE": ("{field} has an invalid value", "قيمة الحقل {field} غير صالحة"),

    # --- Commit path ---
    "MODIFICATION_IN_PROGRESS": ("Another modification is being applied to this subscription",
                                 "يتم تطبيق تعديل آخر على هذا الاشتراك حاليا"),
    "NOT_APPROVED": ("Modification is not approved (status: {status})",
                     "التعديل غير معتمد (الحالة: {status})"),
    "VALIDATION_FAILED": ("The request failed validation", "فشل التحقق من الطلب"),
    "ANALYSIS_NOT_FOUND": ("No impact analysis recorded for modification {modification_id}",
                           "لا يوجد تحليل أثر مسجل للتعديل {modification_id}"),
    "SLOT_CONFLICT": ("Session {session_id} conflicts with an existing booking",
                      "الجلسة {session_id} تتعارض مع حجز قائم"),
    "NO_SLOT_AVAILABLE": ("No free slot found within {days} days", "لم يتم العثور على موعد متاح خلال {days} يوما"),
    "ROLLBACK_NOT_FOUND": ("No rollback data for modification {modification_id}",
                           "لا توجد بيانات تراجع للتعديل {modification_id}"),
    "ALREADY_IMPLEMENTED": ("Modification {modification_id} has already been implemented",
                            "تم تنفيذ التعديل {modification_id} بالفعل"),
    "LATER_MODIFICATION_EXISTS": ("Roll back the later modifications before {modification_id}",
                                  "يجب التراجع عن التعديلات اللاحقة قبل {modification_id}"),
    "BULK_ALL_FAILED": ("None of the {count} enrollments could be analysed",
                        "تعذر تحليل أي من التسجيلات البالغ عددها {count}"),
    "NO_SCENARIOS": ("At least one scenario is required", "مطلوب سيناريو واحد على الأقل"),
    "MALFORMED_REQUEST": ("Request payload is malformed: {detail}", "بيانات الطلب غير صالحة: {detail}"),

    # --- Infrastructure ---
    "STORE_UNAVAILABLE": ("The session store is unavailable, please retry",
                          "مخزن الجلسات غير متاح، يرجى إعادة المحاولة"),
    "STORE_TIMEOUT": ("The session store did not respond in time, please retry",
                      "لم يستجب مخزن الجلسات في الوقت المحدد، يرجى إعادة المحاولة"),
}


def render(code: str, **params: Any) -> Tuple[str, str]:
    """Return the (en, ar) message for `code` with params substituted."""
    en, ar = MESSAGES.get(code, (code, code))
    try:
        return en.format(**params), ar.format(**params)
    except KeyError:
        return en, ar


class ModificationError(Exception):
    """Base class: carries a machine code plus bilingual text."""

    retryable = False

    def __init__(self, code: str, details: Optional[Dict[str, Any]] = None, **params: Any):
        self.code = code
        self.details = details or {}
        self.message_en, self.message_ar = render(code, **params)
        super().__init__(f"{code}: {self.message_en}")

    def to_payload(self) -> ErrorPayload:
        return ErrorPayload(
            code=self.code,
            message_en=self.message_en,
            message_ar=self.message_ar,
            retryable=self.retryable,
            details=self.details
        )


class ValidationError(ModificationError):
    """A business rule rejected the request."""


class ConflictError(ModificationError):
    """A commit collided with another one or with existing bookings."""


class InfrastructureError(ModificationError):
    """The store could not be reached or timed out."""

    retryable = True


class PartialFailure(ModificationError):
    """Some items of a bulk operation failed."""


@contextmanager
def translate_store_errors() -> Iterator[None]:
    """Re-raise store connectivity failures as retryable InfrastructureError."""
    try:
        yield
    except TimeoutError as exc:
        logger.error(f"Store timed out: {exc}")
        raise InfrastructureError("STORE_TIMEOUT", details={"reason": str(exc)}) from exc
    except OSError as exc:
        # ConnectionError and friends
        logger.error(f"Store unavailable: {exc}")
        raise InfrastructureError("STORE_UNAVAILABLE", details={"reason": str(exc)}) from exc
