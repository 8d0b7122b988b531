"""Localised user-facing notices and error code lookup."""

from __future__ import annotations

from typing import Dict, Mapping, Optional

DEFAULT_LOCALE = "en"

_CATALOG: Dict[str, Dict[str, str]] = {
    "en": {
        "no_date": "No date",
        "just_now": "just now",
        "minutes_ago": "{n} minute ago|{n} minutes ago",
        "hours_ago": "{n} hour ago|{n} hours ago",
        "days_ago": "{n} day ago|{n} days ago",
        "weeks_ago": "{n} week ago|{n} weeks ago",
        "months_ago": "{n} month ago|{n} months ago",
        "years_ago": "{n} year ago|{n} years ago",
        "absolute_date": "%B %d, %Y %H:%M",
        "welcome": "Welcome, {name}",
        "default_user": "User",
        "admin_name": "Administrator",
        "admin_badge": "Admin",
        "empty_list": "No entries yet. Be the first to sign the guestbook!",
        "empty_search": "No entries match your search.",
        "login_required": "Please sign in to leave a message.",
        "name_and_message_required": "Please enter both a name and a message.",
        "entry_added": "Your message has been posted.",
        "entry_updated": "Your message has been updated.",
        "entry_deleted": "Your message has been deleted.",
        "entry_not_found": "The entry could not be found.",
        "edit_own_only": "You can only edit your own entries.",
        "delete_own_only": "You can only delete your own entries.",
        "backend_connecting": "Still connecting to the database. Please try again shortly.",
        "backend_failed": "Could not connect to the database. Please refresh the page.",
        "permission_denied": (
            "The database rejected the request. Check the realtime database security rules."
        ),
        "add_failed": "Failed to post your message: {detail}",
        "update_failed": "Failed to update your message: {detail}",
        "delete_failed": "Failed to delete your message: {detail}",
        "logout_failed": "Failed to sign out.",
        "email_required": "Please enter your email address.",
        "password_required": "Please enter your password.",
        "name_required": "Please enter your name.",
        "email_invalid": "Please enter a valid email address.",
        "password_mismatch": "Passwords do not match.",
        "password_too_short": "Passwords must be at least {n} characters long.",
        "profile_save_failed": "Your account was created, but saving your profile failed.",
        "admin_profile_save_failed": (
            "The administrator account was created, but saving it to the database failed. "
            "Grant the administrator role manually from the admin page."
        ),
        "first_admin_created": (
            "The first administrator was created ({email}). "
            "You can now sign in with that email and password."
        ),
        "admin_already_exists": "An administrator already exists.",
        "admin_only": "Only administrators can open the admin page.",
        "signed_out": "You have been signed out.",
        "generic_error": "An error occurred. (code: {code})",
        "generic_error_detail": "An error occurred: {detail}",
        "unknown": "unknown",
        "auth/user-not-found": "This email address is not registered.",
        "auth/wrong-password": "The password is incorrect.",
        "auth/email-already-in-use": "This email address is already in use.",
        "auth/weak-password": "The password is too weak. (at least 6 characters)",
        "auth/invalid-email": "The email address is invalid.",
        "auth/network-request-failed": "A network error occurred. Check your internet connection.",
        "auth/too-many-requests": "Too many requests. Please try again later.",
        "auth/operation-not-allowed": "This operation is not allowed. Check the provider settings.",
        "auth/invalid-credential": "The credentials are invalid.",
        "auth/user-disabled": "This account has been disabled.",
        "auth/requires-recent-login": "Please sign in again for security reasons.",
        "auth/configuration-not-found": (
            "Email/password authentication is not configured for this project. "
            "Enable the email/password sign-in method in the provider console."
        ),
    },
    "ko": {
        "no_date": "날짜 없음",
        "just_now": "방금 전",
        "minutes_ago": "{n}분 전",
        "hours_ago": "{n}시간 전",
        "days_ago": "{n}일 전",
        "weeks_ago": "{n}주 전",
        "months_ago": "{n}개월 전",
        "years_ago": "{n}년 전",
        "absolute_date": "%Y년 %m월 %d일 %H:%M",
        "welcome": "{name}님 환영합니다",
        "default_user": "사용자",
        "admin_name": "관리자",
        "admin_badge": "관리자",
        "empty_list": "아직 방명록이 없습니다. 첫 번째 방명록을 남겨보세요!",
        "empty_search": "검색 결과가 없습니다.",
        "login_required": "방명록을 작성하려면 로그인해주세요.",
        "name_and_message_required": "이름과 메시지를 모두 입력해주세요.",
        "entry_added": "방명록이 작성되었습니다.",
        "entry_updated": "방명록이 수정되었습니다.",
        "entry_deleted": "방명록이 삭제되었습니다.",
        "entry_not_found": "방명록을 찾을 수 없습니다.",
        "edit_own_only": "본인이 작성한 글만 수정할 수 있습니다.",
        "delete_own_only": "본인이 작성한 글만 삭제할 수 있습니다.",
        "backend_connecting": "데이터베이스 연결 중입니다. 잠시 후 다시 시도해주세요.",
        "backend_failed": "데이터베이스 연결에 실패했습니다. 페이지를 새로고침해주세요.",
        "permission_denied": "데이터베이스 보안 규칙 오류입니다. 보안 규칙을 확인해주세요.",
        "add_failed": "방명록 추가에 실패했습니다: {detail}",
        "update_failed": "방명록 수정에 실패했습니다: {detail}",
        "delete_failed": "방명록 삭제에 실패했습니다: {detail}",
        "logout_failed": "로그아웃에 실패했습니다.",
        "email_required": "이메일을 입력해주세요.",
        "password_required": "비밀번호를 입력해주세요.",
        "name_required": "이름을 입력해주세요.",
        "email_invalid": "유효한 이메일 주소를 입력해주세요.",
        "password_mismatch": "비밀번호가 일치하지 않습니다.",
        "password_too_short": "비밀번호는 최소 {n}자 이상이어야 합니다.",
        "profile_save_failed": "계정은 생성되었지만, 사용자 정보 저장에 실패했습니다.",
        "admin_profile_save_failed": (
            "관리자 계정은 생성되었지만, 데이터베이스 저장에 실패했습니다. "
            "관리자 페이지에서 수동으로 권한을 부여해주세요."
        ),
        "first_admin_created": (
            "첫 관리자가 성공적으로 생성되었습니다! ({email}) "
            "이제 해당 이메일과 비밀번호로 로그인하실 수 있습니다."
        ),
        "admin_already_exists": "관리자가 이미 존재합니다.",
        "admin_only": "관리자만 접근할 수 있습니다.",
        "signed_out": "로그아웃되었습니다.",
        "generic_error": "오류가 발생했습니다. (코드: {code})",
        "generic_error_detail": "오류가 발생했습니다: {detail}",
        "unknown": "알 수 없음",
        "auth/user-not-found": "등록되지 않은 이메일입니다.",
        "auth/wrong-password": "비밀번호가 잘못되었습니다.",
        "auth/email-already-in-use": "이미 사용 중인 이메일입니다.",
        "auth/weak-password": "비밀번호가 너무 약합니다. (최소 6자)",
        "auth/invalid-email": "유효하지 않은 이메일 주소입니다.",
        "auth/network-request-failed": "네트워크 오류가 발생했습니다. 인터넷 연결을 확인해주세요.",
        "auth/too-many-requests": "너무 많은 요청이 발생했습니다. 잠시 후 다시 시도해주세요.",
        "auth/operation-not-allowed": "이 작업이 허용되지 않았습니다. 인증 설정을 확인해주세요.",
        "auth/invalid-credential": "인증 정보가 유효하지 않습니다.",
        "auth/user-disabled": "사용자 계정이 비활성화되었습니다.",
        "auth/requires-recent-login": "보안을 위해 다시 로그인해주세요.",
        "auth/configuration-not-found": (
            "이메일/비밀번호 인증이 설정되지 않았습니다. "
            "인증 콘솔에서 이메일/비밀번호 로그인 방법을 활성화해주세요."
        ),
    },
}


def available_locales() -> tuple[str, ...]:
    return tuple(_CATALOG)


def _catalog(locale: str) -> Mapping[str, str]:
    return _CATALOG.get(locale) or _CATALOG[DEFAULT_LOCALE]


def text(key: str, locale: str = DEFAULT_LOCALE, **params: object) -> str:
    """Return the localised message for ``key`` formatted with ``params``.

    Messages containing ``|`` carry a singular and plural form selected by the
    ``n`` parameter.
    """

    template = _catalog(locale).get(key)
    if template is None:
        template = _CATALOG[DEFAULT_LOCALE][key]
    if "|" in template:
        singular, plural = template.split("|", 1)
        template = singular if params.get("n") == 1 else plural
    return template.format(**params) if params else template


def error_message(code: Optional[str], locale: str = DEFAULT_LOCALE) -> str:
    """Map an identity provider error code to a localised notice."""

    catalog = _catalog(locale)
    if code and code.startswith("auth/") and code in catalog:
        return catalog[code]
    return text("generic_error", locale, code=code or text("unknown", locale))


def is_known_error(code: Optional[str]) -> bool:
    return bool(code) and code in _CATALOG[DEFAULT_LOCALE] and code.startswith("auth/")


__all__ = [
    "DEFAULT_LOCALE",
    "available_locales",
    "error_message",
    "is_known_error",
    "text",
]
