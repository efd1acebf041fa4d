import re

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")

# Free / personal mailbox providers that do not identify a business
FREE_EMAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com",
    "yahoo.com", "yahoo.co.uk", "yahoo.co.in", "yahoo.in", "yahoo.fr", "yahoo.de", "yahoo.es",
    "yahoo.it", "yahoo.ca", "yahoo.com.au", "yahoo.com.br", "ymail.com", "rocketmail.com",
    "hotmail.com", "hotmail.co.uk", "hotmail.fr", "hotmail.de", "hotmail.it", "hotmail.es",
    "outlook.com", "outlook.in", "live.com", "live.co.uk", "msn.com", "passport.com",
    "aol.com", "aim.com",
    "icloud.com", "me.com", "mac.com",
    "protonmail.com", "protonmail.ch", "proton.me", "pm.me", "tutanota.com", "tuta.io",
    "mail.com", "email.com", "gmx.com", "gmx.net", "gmx.de", "web.de", "t-online.de",
    "zoho.com", "zohomail.com", "yandex.com", "yandex.ru", "ya.ru", "mail.ru", "inbox.ru",
    "bk.ru", "list.ru", "rambler.ru",
    "qq.com", "163.com", "126.com", "sina.com", "sohu.com", "yeah.net", "foxmail.com",
    "naver.com", "daum.net", "hanmail.net",
    "rediffmail.com", "libero.it", "virgilio.it", "laposte.net", "orange.fr", "free.fr",
    "wanadoo.fr", "sfr.fr", "btinternet.com", "sky.com", "comcast.net", "verizon.net",
    "att.net", "sbcglobal.net", "cox.net", "charter.net", "earthlink.net",
    "hushmail.com", "fastmail.com", "fastmail.fm", "mailinator.com", "guerrillamail.com",
    "10minutemail.com", "temp-mail.org", "yopmail.com",
})


def normalize_identifier(email: str) -> str:
    """Trim and lower-case an email so it can key rate limits and OTP records"""
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    if not isinstance(email, str):
        return False
    return EMAIL_PATTERN.fullmatch(email) is not None


def email_domain(email: str) -> str:
    normalized = normalize_identifier(email)
    if "@" not in normalized:
        return ""
    return normalized.rsplit("@", 1)[1]


def is_free_email_provider(email: str) -> bool:
    """True when the domain (or a parent domain) is a known free mail provider"""
    domain = email_domain(email)
    if not domain:
        return False
    labels = domain.split(".")
    # mail.yahoo.co.uk -> yahoo.co.uk -> co.uk -> uk
    for i in range(len(labels) - 1):
        if ".".join(labels[i:]) in FREE_EMAIL_DOMAINS:
            return True
    return False


def is_corporate_email(email: str) -> bool:
    if not email_domain(email):
        return False
    return not is_free_email_provider(email)
