"""Data-access (SAR) notice rendering and delivery.

The notice is described once as a list of sections and rendered to both a
plain-text and an HTML body. Organisation identity strings come from settings.
"""
import html
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from core.config import Settings
from core.exceptions import PrivacyRequestError
from utils.email import SmtpMailer
from utils.email_validation import is_valid_email
import logging

logger = logging.getLogger(__name__)

SAR_SUBJECT = "Notice on Processing of Business Contact Data (Not an ad)"
SAR_SUCCESS_MESSAGE = "Data access request received. A detailed email notice has been sent to your inbox."
SAR_INVALID_EMAIL = "Please provide a valid email address."
SAR_FAILURE = "Failed to submit request. Please try again later."


@dataclass
class PrivacyIdentity:
    legal_entity: str
    primary_office: str
    registered_office: str
    hosting_regions: str
    unsubscribe_link: str
    brand_name: str
    logo_url: str
    site_url: str
    privacy_center_url: str
    support_email: str
    from_email: str
    from_name: str
    notify_email: str = ""

    @classmethod
    def from_settings(cls, config: Settings) -> "PrivacyIdentity":
        return cls(
            legal_entity=config.PRIVACY_LEGAL_ENTITY_NAME,
            primary_office=config.PRIVACY_PRIMARY_ADDRESS,
            registered_office=config.PRIVACY_REGISTERED_ADDRESS,
            hosting_regions=config.PRIVACY_HOSTING_REGIONS,
            unsubscribe_link=config.PRIVACY_UNSUBSCRIBE_LINK,
            brand_name=config.PRIVACY_BRAND_NAME,
            logo_url=config.PRIVACY_LOGO_URL,
            site_url=config.PRIVACY_SITE_URL,
            privacy_center_url=config.PRIVACY_CENTER_URL,
            support_email=config.PRIVACY_SUPPORT_EMAIL,
            from_email=config.SMTP_FROM_EMAIL or config.PRIVACY_FROM_EMAIL,
            from_name=config.SMTP_FROM_NAME or config.PRIVACY_BRAND_NAME,
            notify_email=config.PRIVACY_NOTIFY_EMAIL,
        )


@dataclass
class PrivacyNotice:
    subject: str
    text_body: str
    html_body: str
    from_email: str
    from_name: str


# {placeholders} are filled from PrivacyIdentity
NOTICE_SECTIONS: List[Dict[str, Any]] = [
    {
        "paragraphs": [
            "We prioritize privacy and clarity. This message informs you that your professional contact details "
            "appear in our business-to-business database. Below we explain how we handle them and what choices you have.",
        ],
    },
    {
        "heading": "Who we are",
        "paragraphs": [
            "{brand_name} provides sales automation and AI-powered prospecting tools to help organizations reach "
            "relevant B2B contacts.",
        ],
        "identity_block": True,
    },
    {
        "heading": "Why we process your data and our legal grounds",
        "paragraphs": ["We handle professional contact data to help customers:"],
        "items": [
            "Identify and qualify potential B2B prospects and keep records accurate.",
            "Conduct lawful direct outreach for sales, marketing, and recruiting.",
            "Enrich CRM systems, score and route leads, and streamline go-to-market operations.",
            "Deliver AI-driven recommendations and personalization to improve relevance.",
        ],
        "closing": [
            "Legal bases depend on jurisdiction, including our legitimate business interests and those of our "
            "customers, balanced against your rights. In some U.S. states, use of this data may be considered a "
            "“sale,” “share,” or “targeted advertising”; you can opt out. In India, we rely on "
            "consent or legitimate uses as applicable under the Digital Personal Data Protection Act, 2023.",
        ],
    },
    {
        "heading": "What we collect",
        "paragraphs": ["We focus on professional or work-related details:"],
        "items": [
            "Name.",
            "Business email and phone number (including freemail domains used for work).",
            "Company, job title, department/seniority, and office location.",
            "Public professional profiles and links.",
            "Employment history and education where publicly available.",
            "Signals and derived insights, such as potential interest in certain B2B offerings.",
        ],
        "closing": ["We do not knowingly collect sensitive personal information for these purposes."],
    },
    {
        "heading": "Where we obtain data",
        "paragraphs": ["We compile and validate data from:"],
        "items": [
            "Features within our services where users contribute business contact info consistent with our terms.",
            "Public sources and openly available web pages discovered through large-scale web indexing.",
            "Reputable third-party data providers and partners.",
            "Customer submissions and integrations.",
            "Internal quality checks and model-driven normalization.",
        ],
    },
    {
        "heading": "How we share information",
        "paragraphs": ["Under contracts and applicable law, we may disclose business-contact data to:"],
        "items": [
            "Customers for lawful B2B sales, marketing, and recruiting activities.",
            "Service providers acting on our instructions to operate and secure our platform.",
            "Integration partners that help deliver our services.",
        ],
        "closing": ["Recipients must safeguard the data and use it only for permitted purposes."],
    },
    {
        "heading": "Use of AI and automation",
        "paragraphs": ["We apply machine learning to:"],
        "items": [
            "Clean, enrich, and deduplicate records; improve completeness and accuracy.",
            "Suggest relevant contacts, timing, and message variants for outreach.",
            "Assist with lead scoring, routing, and campaign optimization.",
        ],
        "closing": [
            "These automations support prospecting only and are not used to make decisions with legal or similarly "
            "significant impact. Human review governs consequential outcomes.",
        ],
    },
    {
        "heading": "International transfers and safeguards",
        "paragraphs": [
            "We may process and store data in {hosting_regions}. Where required, we use appropriate transfer tools "
            "(such as Standard Contractual Clauses) and implement technical and organizational safeguards, including "
            "encryption and access controls.",
        ],
    },
    {
        "heading": "Your rights and options",
        "paragraphs": ["Depending on your location, you may be able to:"],
        "items": [
            "Access, correct, or delete your data.",
            "Object to or restrict processing.",
            "Opt out of “sale,” “sharing,” or targeted advertising.",
            "Opt out of certain profiling for marketing.",
            "Request a copy (portability).",
            "Complain to your relevant supervisory authority.",
        ],
    },
    {
        "heading": "How to exercise your rights",
        "paragraphs": [
            "The quickest route is our Privacy Center on our website. If you cannot use it, email {support_email} "
            "with your request and the email address(es) to locate your record. We will verify your identity and "
            "respond within required timeframes. Authorized agents may submit requests where permitted.",
        ],
        "button": ("Open Privacy Center", "privacy_center_url"),
    },
    {
        "heading": "Retention",
        "paragraphs": [
            "We keep business-contact data only as long as needed for the purposes above or to comply with legal "
            "obligations. If you request deletion or object, we will act unless we must retain limited data (for "
            "example, in a do-not-contact or suppression list) to honor your preferences.",
        ],
    },
    {
        "heading": "Learn more",
        "paragraphs": [
            "See our Privacy Policy and Privacy/Trust Center on our website, or contact {support_email} with questions.",
        ],
    },
    {
        "heading": "Unsubscribe",
        "paragraphs": [
            "To stop receiving notices or opt out of sale/sharing/targeted advertising, use the unsubscribe option "
            "below or email {support_email} with “UNSUBSCRIBE” in the subject line.",
        ],
        "link": "unsubscribe_link",
    },
]


def _text_values(identity: PrivacyIdentity) -> Dict[str, str]:
    return dict(vars(identity))


def _html_values(identity: PrivacyIdentity) -> Dict[str, str]:
    values = {k: html.escape(v or "") for k, v in vars(identity).items()}
    values["support_email"] = (
        f'<a href="mailto:{values["support_email"]}" style="color: #58A6FF;">{values["support_email"]}</a>'
    )
    return values


def _render_text(identity: PrivacyIdentity) -> str:
    values = _text_values(identity)
    lines: List[str] = []
    for section in NOTICE_SECTIONS:
        if section.get("heading"):
            lines += [section["heading"], ""]
        for paragraph in section.get("paragraphs", []):
            lines.append(paragraph.format(**values))
        if section.get("identity_block"):
            lines += [
                "",
                f"Registered entity: {identity.legal_entity}",
                "Primary Office:",
                identity.primary_office,
                "",
                "Registered Office:",
                identity.registered_office,
                f"Data Protection Officer: {identity.support_email}",
            ]
        for item in section.get("items", []):
            lines.append(f"- {item}")
        if section.get("closing"):
            lines.append("")
            lines += [c.format(**values) for c in section["closing"]]
        if section.get("link"):
            lines.append(values[section["link"]])
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _render_html(identity: PrivacyIdentity, year: int) -> str:
    values = _html_values(identity)
    raw = {k: html.escape(v or "") for k, v in vars(identity).items()}
    parts: List[str] = [
        "<div style=\"font-family: 'Inter', 'Segoe UI', Arial, sans-serif; background-color: #0D1117; color: #F0F6FC; padding: 32px;\">",
        '<div style="text-align: center; margin-bottom: 24px;">',
        f'<a href="{raw["site_url"]}" style="text-decoration: none;">',
        f'<img src="{raw["logo_url"]}" alt="{raw["from_name"]} logo" style="height: 48px; width: auto;" />',
        f'<span style="font-size: 24px; font-weight: 700; color: #F0F6FC;">{raw["from_name"]}</span>',
        "</a>",
        "</div>",
        '<div style="background: #161B22; border-radius: 20px; padding: 28px; border: 1px solid rgba(88,166,255,0.18);">',
    ]
    for index, section in enumerate(NOTICE_SECTIONS):
        if section.get("heading"):
            tag = "h2" if index == 1 else "h3"
            parts.append(f'<{tag} style="margin-top: 24px; color: #58A6FF;">{html.escape(section["heading"])}</{tag}>')
        for paragraph in section.get("paragraphs", []):
            parts.append(f'<p style="line-height: 1.7;">{html.escape(paragraph).format(**values)}</p>')
        if section.get("identity_block"):
            parts += [
                '<div style="line-height: 1.7; white-space: pre-line; border-left: 3px solid #58A6FF; padding: 16px;">',
                f"<strong>Registered entity:</strong> {raw['legal_entity']}\n\n",
                f"<strong>Primary Office</strong>\n{raw['primary_office']}\n\n",
                f"<strong>Registered Office</strong>\n{raw['registered_office']}\n\n",
                f"<strong>Data Protection Officer:</strong> {values['support_email']}",
                "</div>",
            ]
        if section.get("items"):
            parts.append('<ul style="line-height: 1.7; padding-left: 22px; margin: 16px 0;">')
            parts += [f'<li style="margin-bottom: 6px;">{html.escape(item)}</li>' for item in section["items"]]
            parts.append("</ul>")
        for closing in section.get("closing", []):
            parts.append(f'<p style="line-height: 1.7;">{html.escape(closing).format(**values)}</p>')
        if section.get("button"):
            label, key = section["button"]
            parts.append(
                f'<div style="text-align: center; margin: 28px 0;"><a href="{raw[key]}" '
                'style="display: inline-block; padding: 14px 32px; border-radius: 999px; background: #58A6FF; '
                f'color: #0D1117; font-weight: 600; text-decoration: none;">{html.escape(label)}</a></div>'
            )
        if section.get("link"):
            link = raw[section["link"]]
            parts.append(f'<p style="line-height: 1.6;"><a href="{link}" style="color: #58A6FF;">{link}</a></p>')
    parts += [
        '<div style="margin-top: 32px; padding: 18px; background: rgba(88,166,255,0.08); border-radius: 16px; text-align: center;">',
        f'<p style="margin: 0; font-weight: 600; color: #58A6FF;">{raw["from_name"]} Privacy Office</p>',
        '<p style="margin: 6px 0 0 0; color: #8B949E; font-size: 13px;">This email was generated automatically in '
        "response to a data-access request submitted through our Privacy Center.</p>",
        "</div>",
        "</div>",
        f'<p style="margin-top: 24px; font-size: 12px; color: #8B949E; text-align: center;">&copy; {year} {raw["from_name"]}. All rights reserved.</p>',
        "</div>",
    ]
    return "".join(parts)


def build_sar_notice(identity: PrivacyIdentity, year: Optional[int] = None) -> PrivacyNotice:
    year = year or datetime.utcnow().year
    return PrivacyNotice(
        subject=SAR_SUBJECT,
        text_body=_render_text(identity),
        html_body=_render_html(identity, year),
        from_email=identity.from_email,
        from_name=identity.from_name,
    )




@dataclass
class PrivacyRequestKind:
    """A Privacy Center request that is confirmed to the requester and relayed to the privacy team"""

    subject: str
    request_sentence: str
    next_steps: List[str]
    note_heading: str
    note_items: List[str]
    note_color: str
    success_message: str
    notify_subject: str
    notify_summary: str
    requested_action: str
    log_name: str


OPT_OUT_REQUEST = PrivacyRequestKind(
    subject="Your Opt-Out Request Has Been Received",
    request_sentence="We have received your request to stop all future communication from {brand_name}.",
    next_steps=[
        "Your email address will be marked as 'Do Not Contact' in our database.",
        "You will no longer receive sales or marketing communications from us.",
        "Your request will be processed within 5 business days.",
    ],
    note_heading="Please note:",
    note_items=[
        "Your information will remain in our database but will be flagged to prevent any future outreach.",
    ],
    note_color="#FACC15",
    success_message="Opt-out request received. Our privacy team will mark your profile as Do Not Contact.",
    notify_subject="Privacy Center Submission: Opt-Out Request",
    notify_summary="A new opt-out request has been submitted via the Privacy Center.",
    requested_action="Stop All Future Communication (Opt-Out)",
    log_name="opt-out",
)

ERASURE_REQUEST = PrivacyRequestKind(
    subject="Your Data Erasure Request Has Been Received",
    request_sentence="We have received your request to permanently delete your personal identifying data from our systems.",
    next_steps=[
        "Our privacy team will review your request and verify your identity.",
        "We will permanently delete all personal identifying data associated with your email address.",
        "This process is irreversible and typically completed within 30 days.",
    ],
    note_heading="Important information:",
    note_items=[
        "We may need to contact you to verify your identity before processing the deletion.",
        "Some data may be retained if required by law or for legitimate business purposes (e.g., transaction records).",
        "If you have an active account with us, deletion may affect your ability to use our services.",
    ],
    note_color="#F87171",
    success_message="Data erasure request received. Our privacy team will review and follow up for confirmation.",
    notify_subject="Privacy Center Submission: Data Erasure Request",
    notify_summary="A new data erasure request has been submitted via the Privacy Center.",
    requested_action="Remove My Information (Erasure)",
    log_name="data erasure",
)


def _submitted_label(submitted_at: datetime) -> str:
    return submitted_at.strftime("%Y-%m-%d %H:%M UTC")


def build_request_confirmation(kind: PrivacyRequestKind, identity: PrivacyIdentity, submitted_at: datetime) -> PrivacyNotice:
    """Confirmation sent back to the person who filed the request"""
    brand = identity.brand_name
    request_sentence = kind.request_sentence.format(brand_name=brand)
    submitted = _submitted_label(submitted_at)

    text_lines = [
        f"Thank you for contacting {brand} Privacy Center.",
        "",
        request_sentence,
        "",
        "What happens next:",
    ]
    text_lines += [f"- {step}" for step in kind.next_steps]
    text_lines += ["", kind.note_heading]
    text_lines += [f"- {item}" for item in kind.note_items]
    text_lines += [
        "",
        f"If you have any questions or need to update your request, please contact us at {identity.support_email}.",
        "",
        f"Request submitted: {submitted}",
        "",
        "Thank you for your patience.",
        "",
        f"{brand} Privacy Team",
    ]

    raw = {k: html.escape(v or "") for k, v in vars(identity).items()}
    support = f'<a href="mailto:{raw["support_email"]}" style="color: #58A6FF;">{raw["support_email"]}</a>'
    parts = [
        "<div style=\"font-family: 'Inter', 'Segoe UI', Arial, sans-serif; background-color: #0D1117; color: #F0F6FC; padding: 32px;\">",
        '<div style="text-align: center; margin-bottom: 24px;">',
        f'<a href="{raw["site_url"]}" style="text-decoration: none;">',
        f'<img src="{raw["logo_url"]}" alt="{raw["from_name"]} logo" style="height: 48px; width: auto;" />',
        f'<span style="font-size: 24px; font-weight: 700; color: #F0F6FC;">{raw["from_name"]}</span>',
        "</a>",
        "</div>",
        '<div style="background: #161B22; border-radius: 20px; padding: 28px; border: 1px solid rgba(88,166,255,0.18);">',
        f'<h2 style="color: #58A6FF; margin-top: 0;">{html.escape(kind.subject)}</h2>',
        f'<p style="line-height: 1.7;">Thank you for contacting {raw["brand_name"]} Privacy Center.</p>',
        f'<p style="line-height: 1.7;">{html.escape(request_sentence)}</p>',
        '<h3 style="margin-top: 24px; color: #58A6FF;">What happens next:</h3>',
        '<ul style="line-height: 1.7; padding-left: 22px; margin: 16px 0;">',
    ]
    parts += [f'<li style="margin-bottom: 6px;">{html.escape(step)}</li>' for step in kind.next_steps]
    parts += [
        "</ul>",
        f'<div style="margin: 24px 0; padding: 16px; border-left: 3px solid {kind.note_color}; color: {kind.note_color};">',
        f"<strong>{html.escape(kind.note_heading)}</strong>",
        '<ul style="margin: 8px 0 0 0; padding-left: 22px; line-height: 1.7;">',
    ]
    parts += [f"<li>{html.escape(item)}</li>" for item in kind.note_items]
    parts += [
        "</ul>",
        "</div>",
        f'<p style="line-height: 1.7;">If you have any questions or need to update your request, please contact us at {support}.</p>',
        f'<p style="margin: 0; font-size: 13px; color: #8B949E;">Request submitted: {submitted}</p>',
        '<p style="margin-top: 24px; line-height: 1.7;">Thank you for your patience.</p>',
        f'<p style="line-height: 1.7;"><strong>{raw["brand_name"]} Privacy Team</strong></p>',
        "</div>",
        f'<p style="margin-top: 24px; font-size: 12px; color: #8B949E; text-align: center;">&copy; {submitted_at.year} {raw["from_name"]}. All rights reserved.</p>',
        "</div>",
    ]
    return PrivacyNotice(
        subject=kind.subject,
        text_body="\n".join(text_lines),
        html_body="".join(parts),
        from_email=identity.from_email,
        from_name=identity.from_name,
    )


def build_internal_notification(kind: PrivacyRequestKind, email: str, submitted_at: datetime) -> Tuple[str, str, str]:
    """(subject, text, html) of the message relayed to the privacy team"""
    text = "\n".join([
        kind.notify_summary,
        "",
        f"User Email: {email}",
        f"Requested Action: {kind.requested_action}",
        f"Submitted At: {submitted_at.isoformat()}",
    ])
    return kind.notify_subject, text, html.escape(text).replace("\n", "<br>")


def _requester_email(email) -> str:
    email = email.strip() if isinstance(email, str) else ""
    if not email or not is_valid_email(email):
        raise PrivacyRequestError(status_code=400, detail=SAR_INVALID_EMAIL)
    return email


def _require_mailer(mailer: SmtpMailer) -> None:
    if not mailer.is_configured:
        logger.error("SMTP credentials not configured. Please set SMTP_USERNAME and SMTP_PASSWORD.")
        raise PrivacyRequestError(status_code=500, detail=SAR_FAILURE)


async def submit_access_request(email: str, mailer: SmtpMailer, identity: PrivacyIdentity) -> dict:
    """Validate the requester's email and send them the data-processing notice"""
    email = _requester_email(email)
    _require_mailer(mailer)

    try:
        notice = build_sar_notice(identity)
        sent = await mailer.send_async(
            notice.subject,
            email,
            notice.html_body,
            notice.text_body,
            from_email=notice.from_email,
            from_name=notice.from_name,
        )
    except Exception as e:
        logger.error(f"Failed to process data access request: {e}")
        raise PrivacyRequestError(status_code=500, detail=SAR_FAILURE)
    if not sent:
        raise PrivacyRequestError(status_code=500, detail=SAR_FAILURE)

    logger.info(f"Data access notice sent to {email}")
    return {"success": True, "message": SAR_SUCCESS_MESSAGE}


async def submit_privacy_request(
    kind: PrivacyRequestKind,
    email: str,
    mailer: SmtpMailer,
    identity: PrivacyIdentity,
    submitted_at: Optional[datetime] = None,
) -> dict:
    """Confirm an opt-out / erasure request to the requester and notify the privacy team.

    Both messages must go out; a failure of either is reported as a failed submission.
    """
    email = _requester_email(email)
    _require_mailer(mailer)
    submitted_at = submitted_at or datetime.now(timezone.utc)

    try:
        confirmation = build_request_confirmation(kind, identity, submitted_at)
        confirmed = await mailer.send_async(
            confirmation.subject,
            email,
            confirmation.html_body,
            confirmation.text_body,
            from_email=confirmation.from_email,
            from_name=confirmation.from_name,
        )
        notified = False
        if confirmed:
            subject, text, html_body = build_internal_notification(kind, email, submitted_at)
            notified = await mailer.send_async(
                subject,
                identity.notify_email or identity.from_email,
                html_body,
                text,
                from_email=identity.from_email,
                from_name=identity.from_name,
            )
    except Exception as e:
        logger.error(f"Failed to process {kind.log_name} request: {e}")
        raise PrivacyRequestError(status_code=500, detail=SAR_FAILURE)
    if not (confirmed and notified):
        raise PrivacyRequestError(status_code=500, detail=SAR_FAILURE)

    logger.info(f"{kind.log_name.capitalize()} request recorded for {email}")
    return {"success": True, "message": kind.success_message}
