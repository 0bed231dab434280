# Overview: Payme JSON-RPC error catalogue (codes and localized messages).

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PaymeError:
    name: str
    code: int
    ru: str
    en: str
    uz: str

    def body(self, **extra) -> dict:
        """The `error` member of a JSON-RPC reply."""
        error = {
            "code": self.code,
            "message": {"ru": self.ru, "en": self.en, "uz": self.uz},
        }
        error.update(extra)
        return error


class PaymeException(Exception):
    """Raised inside the adapter to short-circuit into an error reply."""

    def __init__(self, error: PaymeError, **extra):
        self.error = error
        self.extra = extra
        super().__init__(f"{error.name} ({error.code})")


INVALID_AMOUNT = PaymeError(
    "InvalidAmount", -31001,
    ru="Недопустимая сумма",
    en="Invalid amount",
    uz="Noto'g'ri summa",
)
TRANSACTION_NOT_FOUND = PaymeError(
    "TransactionNotFound", -31003,
    ru="Транзакция не найдена",
    en="Transaction not found",
    uz="Tranzaktsiya topilmadi",
)
CANT_DO_OPERATION = PaymeError(
    "CantDoOperation", -31008,
    ru="Мы не можем сделать операцию",
    en="We can't do operation",
    uz="Biz operatsiyani bajara olmaymiz",
)
ACCOUNT_NOT_FOUND = PaymeError(
    "AccountNotFound", -31050,
    ru="Мы не нашли вашу учетную запись",
    en="We couldn't find your account",
    uz="Biz sizning hisobingizni topolmadik.",
)
ALREADY_DONE = PaymeError(
    "AlreadyDone", -31060,
    ru="Оплата за это уже проведена или статус неактивен.",
    en="Already paid for this or status is not active",
    uz="Bu uchun to'lov qilib bo'lingan yoki status aktiv emas.",
)
ATTENDANCE_BUSY = PaymeError(
    "AttendanceBusy", -31099,
    ru="Для данного посещения уже существует активная транзакция",
    en="An active transaction already exists for this attendance",
    uz="Ushbu qatnashuv uchun faol tranzaksiya allaqachon mavjud",
)
INVALID_AUTHORIZATION = PaymeError(
    "InvalidAuthorization", -32504,
    ru="Авторизация недействительна",
    en="Authorization invalid",
    uz="Avtorizatsiya yaroqsiz",
)
SYSTEM_ERROR = PaymeError(
    "SystemError", -32400,
    ru="Системная ошибка",
    en="System error",
    uz="Tizim xatosi",
)
METHOD_NOT_FOUND = PaymeError(
    "MethodNotFound", -32601,
    ru="Метод не найден",
    en="Method not found",
    uz="Metod topilmadi",
)
PARSE_ERROR = PaymeError(
    "ParseError", -32700,
    ru="Ошибка разбора JSON",
    en="Parse error",
    uz="JSON tahlil xatosi",
)
