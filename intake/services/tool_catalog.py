"""Known tool dictionary and category rules.

Both tables are plain data: extending detection means adding an entry here,
not touching the aggregator.
"""

import re
from typing import List, Pattern, Tuple


_RAW_TOOLS = (
    # Microsoft Office & 365
    "excel", "microsoft excel", "word", "microsoft word", "powerpoint", "microsoft powerpoint",
    "outlook", "microsoft outlook", "teams", "microsoft teams", "microsoft 365", "office 365",
    "sharepoint", "onedrive", "onenote", "access", "publisher",
    "ms forms", "microsoft forms", "forms",
    # Google Workspace
    "gmail", "google drive", "google docs", "google sheets", "google slides",
    "google calendar", "google meet", "google workspace",
    "drive", "docs", "sheets", "slides", "calendar",
    # Communication & video
    "slack", "zoom", "skype", "discord", "webex", "gotomeeting",
    "telegram", "whatsapp", "signal",
    # Social media
    "facebook", "twitter", "instagram", "linkedin", "tiktok", "snapchat",
    "youtube", "pinterest", "reddit",
    # Project management
    "asana", "trello", "monday.com", "monday", "jira", "basecamp", "clickup", "notion",
    "wrike", "smartsheet", "airtable",
    # CRM & sales
    "salesforce", "hubspot", "zoho", "pipedrive", "freshsales",
    "zendesk", "intercom", "drift",
    # Finance & accounting
    "quickbooks", "xero", "freshbooks", "sage", "netsuite", "bill.com",
    "expensify", "concur",
    # Design & creative
    "figma", "adobe", "photoshop", "illustrator", "indesign", "canva", "sketch",
    "adobe photoshop", "adobe illustrator", "adobe indesign",
    "premiere", "after effects", "lightroom",
    "clipchamp", "camtasia", "screenflow",
    # Development & DevOps
    "github", "gitlab", "bitbucket", "jira", "confluence",
    "docker", "kubernetes", "jenkins", "aws", "azure",
    # Email marketing & automation
    "mailchimp", "constant contact", "sendgrid", "campaignmonitor",
    "activecampaign", "convertkit",
    # Social media management
    "hootsuite", "buffer", "sprout social", "later", "planoly",
    # File storage & sharing
    "dropbox", "box", "evernote", "google drive",
    # Forms & surveys
    "typeform", "surveymonkey", "google forms", "jotform", "formstack",
    # Calendar & scheduling
    "calendly", "doodle", "acuity", "schedulonce",
    # Analytics
    "google analytics", "mixpanel", "amplitude", "tableau", "power bi",
    # E-commerce
    "shopify", "woocommerce", "magento", "bigcommerce", "squarespace",
    # HR & recruiting
    "bamboohr", "workday", "adp", "gusto", "namely",
    "greenhouse", "lever", "indeed",
    # Other
    "zapier", "ifttt", "stripe", "paypal", "square",
    "mailgun", "twilio", "sendgrid",
)

# Lower-case dictionary entries, duplicates removed, first occurrence kept.
KNOWN_TOOLS: Tuple[str, ...] = tuple(dict.fromkeys(_RAW_TOOLS))

# Ordered; the first rule with a substring found in the lower-cased name wins.
CATEGORY_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Office Suite", ("excel", "word", "powerpoint", "google sheets", "google docs", "google slides",
                      "office 365", "microsoft 365", "sheets", "docs", "slides")),
    ("Communication", ("slack", "teams", "zoom", "gmail", "outlook", "skype", "discord", "meet",
                       "webex", "telegram", "whatsapp", "signal")),
    ("Social Media", ("facebook", "twitter", "instagram", "linkedin", "tiktok", "snapchat",
                      "youtube", "pinterest", "reddit")),
    ("Social Media Management", ("hootsuite", "buffer", "sprout", "later", "planoly")),
    ("Project Management", ("asana", "trello", "monday", "jira", "basecamp", "notion", "clickup",
                            "wrike", "smartsheet")),
    ("CRM", ("salesforce", "hubspot", "zoho", "pipedrive", "freshsales", "zendesk", "intercom")),
    ("Finance/Accounting", ("quickbooks", "xero", "freshbooks", "sage", "netsuite", "bill.com",
                            "expensify", "concur")),
    ("Design", ("figma", "adobe", "photoshop", "illustrator", "canva", "sketch",
                "indesign", "premiere", "lightroom")),
    ("Video Editing", ("clipchamp", "camtasia", "screenflow", "premiere", "after effects")),
    ("Forms & Surveys", ("forms", "typeform", "surveymonkey", "jotform", "formstack")),
    ("Calendar & Scheduling", ("calendar", "calendly", "doodle", "acuity", "schedulonce")),
    ("Development", ("github", "gitlab", "bitbucket", "docker", "kubernetes", "jenkins")),
    ("File Storage", ("dropbox", "box", "drive", "onedrive", "sharepoint", "evernote")),
    ("Analytics", ("analytics", "mixpanel", "amplitude", "tableau", "power bi")),
    ("E-commerce", ("shopify", "woocommerce", "magento", "bigcommerce", "squarespace")),
    ("HR & Recruiting", ("bamboohr", "workday", "adp", "gusto", "greenhouse", "lever")),
    ("Email Marketing", ("mailchimp", "constant contact", "sendgrid", "campaignmonitor",
                         "activecampaign")),
)

OTHER_CATEGORY = "Other"


def canonical_name(tool: str) -> str:
    """Capitalize the first letter of each word: ``microsoft excel`` -> ``Microsoft Excel``."""
    return " ".join(w[:1].upper() + w[1:] for w in tool.split(" "))


def categorize(tool_name: str) -> str:
    lower = tool_name.lower()
    for category, needles in CATEGORY_RULES:
        if any(needle in lower for needle in needles):
            return category
    return OTHER_CATEGORY


_PATTERNS: Tuple[Tuple[str, Pattern], ...] = tuple(
    (canonical_name(tool), re.compile(rf"\b{re.escape(tool)}\b", re.IGNORECASE))
    for tool in KNOWN_TOOLS
)


def extract_tools(text: str) -> List[str]:
    """
    Find known tools in ``text``.

    Every dictionary entry is tried independently, so overlapping entries
    (``excel`` and ``microsoft excel``) both hit on "Microsoft Excel".

    Returns:
        Canonical names in dictionary order, each at most once
    """
    if not text:
        return []
    return [name for name, pattern in _PATTERNS if pattern.search(text)]
