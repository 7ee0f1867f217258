# hirehub/services/resume_parser.py
"""
Deterministic, section-based resume parser.

    parse_resume(text) -> ParsedResume

The result feeds the scoring prompt, so it favours recall over precision:
anything it cannot place stays available through `raw_text`.
"""

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from dateutil import parser as dateutil_parser

from hirehub.models.evaluation import ExperienceEntry, ParsedResume, PersonalInfo

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'([a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+)')
PHONE_RE = re.compile(r'(\+?\d[\d\s\-\(\)]{6,}\d)')
LINKEDIN_RE = re.compile(r'((?:https?://)?(?:www\.)?linkedin\.com/[^\s,|]+)', re.IGNORECASE)
GITHUB_RE = re.compile(r'((?:https?://)?(?:www\.)?github\.com/[^\s,|]+)', re.IGNORECASE)
URL_RE = re.compile(r'((?:https?://)[^\s,|]+)', re.IGNORECASE)

MONTH = r'(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?'
DATE_TOKEN = rf'(?:{MONTH}\s+\d{{4}}|\d{{1,2}}/\d{{4}}|\d{{4}})'
OPEN_ENDED = r'(?:present|current|now|today)'
DATE_RANGE_RE = re.compile(
    rf'(?P<start>{DATE_TOKEN})\s*(?:-|–|—|to)\s*(?P<end>{DATE_TOKEN}|{OPEN_ENDED})',
    re.IGNORECASE,
)

SECTION_ALIASES = {
    "experience": ["work experience", "professional experience", "employment history", "work history", "experience"],
    "skills": ["technical skills", "core skills", "skills & tools", "skills"],
    "education": ["education", "academic background", "qualifications"],
    "certifications": ["certifications", "certificates", "licenses"],
    "projects": ["selected projects", "personal projects", "projects"],
    "summary": ["professional summary", "summary", "profile", "about me", "objective"],
}

BULLET_CHARS = ('-', '•', '*', '▪')


def _section_key(line: str) -> Optional[str]:
    s = re.sub(r'[^a-z &]', ' ', line.strip().lower())
    s = re.sub(r'\s+', ' ', s).strip()
    if not s or len(s.split()) > 4:
        return None
    for key, aliases in SECTION_ALIASES.items():
        if s in aliases:
            return key
    return None


def split_sections(text: str) -> Tuple[List[str], Dict[str, str]]:
    """Return (header lines before the first heading, {section: body})."""
    lines = [l.rstrip() for l in text.splitlines()]
    header: List[str] = []
    sections: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for line in lines:
        stripped = line.strip().rstrip(':')
        key = _section_key(stripped) if not stripped.startswith(BULLET_CHARS) else None
        if key is not None:
            current = key
            sections.setdefault(key, [])
            continue
        if re.match(r'^[\-=_]{3,}$', line.strip()):
            continue
        if current is None:
            header.append(line)
        else:
            sections[current].append(line)
    return header, {k: "\n".join(v).strip() for k, v in sections.items()}


def normalize_date(token: Optional[str]) -> Optional[str]:
    """'Jan 2020' -> '2020-01', '2019' -> '2019', open-ended markers -> 'present'."""
    if not token:
        return None
    token = token.strip()
    if re.fullmatch(OPEN_ENDED, token, re.IGNORECASE):
        return "present"
    if re.fullmatch(r'\d{4}', token):
        return token
    try:
        dt = dateutil_parser.parse(token, default=datetime(2000, 1, 1))
    except (ValueError, OverflowError):
        return token
    return dt.strftime("%Y-%m")


def extract_personal_info(header_lines: List[str]) -> PersonalInfo:
    lines = [l.strip() for l in header_lines if l.strip()][:8]
    block = "\n".join(lines)
    email = EMAIL_RE.search(block)
    phone = PHONE_RE.search(block)
    # avoid mistaking date ranges for phone numbers
    if phone and DATE_RANGE_RE.search(phone.group(1)):
        phone = None
    linkedin = LINKEDIN_RE.search(block)
    github = GITHUB_RE.search(block)
    website = None
    for m in URL_RE.finditer(block):
        url = m.group(1)
        if "linkedin.com" not in url.lower() and "github.com" not in url.lower():
            website = url
            break

    name = None
    location = None
    for l in lines:
        if '@' in l or re.search(r'\d', l) or '/' in l:
            continue
        if name is None and 1 < len(l) and len(l.split()) <= 5:
            name = l
            continue
        if name is not None and location is None and len(l.split()) <= 5 and ',' in l:
            location = l
    return PersonalInfo(
        name=name,
        email=email.group(1) if email else None,
        phone=phone.group(1).strip() if phone else None,
        location=location,
        linkedin=linkedin.group(1) if linkedin else None,
        github=github.group(1) if github else None,
        website=website,
    )


def _items(section_text: str) -> List[str]:
    """One item per non-empty line, bullets stripped."""
    out = []
    for l in section_text.splitlines():
        s = l.strip().lstrip(''.join(BULLET_CHARS)).strip()
        if s:
            out.append(s)
    return out


def extract_skills(skills_text: str) -> List[str]:
    if not skills_text:
        return []
    tokens = []
    for line in _items(skills_text):
        # "Languages: Python, Go" -> drop the label
        if ':' in line:
            line = line.split(':', 1)[1]
        tokens.extend(t.strip() for t in re.split(r'[,\|;/]+', line))
    seen = set()
    out = []
    for t in tokens:
        t = re.sub(r'\s+', ' ', t)
        if t and t.lower() not in seen:
            seen.add(t.lower())
            out.append(t)
    return out


def _split_title_company(header: str) -> Tuple[Optional[str], Optional[str]]:
    header = DATE_RANGE_RE.sub('', header).strip(' ,|()-–—')
    if ' at ' in header:
        title, company = header.split(' at ', 1)
        return title.strip(), company.strip()
    parts = [p.strip() for p in re.split(r'\s+[-—–|]\s+|,\s*', header) if p.strip()]
    if len(parts) >= 2:
        return parts[0], parts[1]
    return (parts[0] if parts else None), None


def extract_experience(exp_text: str) -> List[ExperienceEntry]:
    """Entries start at every non-bullet line that carries a date range (or at a blank-line break)."""
    if not exp_text:
        return []
    blocks: List[List[str]] = []
    current: List[str] = []
    for raw in exp_text.splitlines():
        line = raw.strip()
        if not line:
            if current:
                blocks.append(current)
                current = []
            continue
        is_bullet = line.startswith(BULLET_CHARS)
        starts_entry = not is_bullet and DATE_RANGE_RE.search(line) and any(
            DATE_RANGE_RE.search(l) for l in current
        )
        if starts_entry:
            # a title line directly above the dates belongs to the new entry
            carry = []
            if not current[-1].startswith(BULLET_CHARS) and not DATE_RANGE_RE.search(current[-1]):
                carry = [current.pop()]
            blocks.append(current)
            current = carry
        current.append(line)
    if current:
        blocks.append(current)

    entries = []
    for block in blocks:
        head = [l for l in block if not l.startswith(BULLET_CHARS)]
        bullets = [l.lstrip(''.join(BULLET_CHARS)).strip() for l in block if l.startswith(BULLET_CHARS)]
        start = end = None
        for l in head[:3]:
            m = DATE_RANGE_RE.search(l)
            if m:
                start, end = normalize_date(m.group('start')), normalize_date(m.group('end'))
                break
        title, company = _split_title_company(head[0]) if head else (None, None)
        if company is None and len(head) > 1:
            company = DATE_RANGE_RE.sub('', head[1]).strip(' ,|()-–—') or None
        entries.append(ExperienceEntry(
            company=company, position=title, start_date=start, end_date=end, highlights=bullets
        ))
    return entries


def parse_resume(text: str) -> ParsedResume:
    if not text or not text.strip():
        return ParsedResume(raw_text=text or "")

    header, sections = split_sections(text)
    personal = extract_personal_info(header or text.splitlines()[:8])

    skills = extract_skills(sections.get("skills", ""))
    if not skills:
        m = re.search(r'Skills[:\s]+(.+)', text, flags=re.IGNORECASE)
        if m:
            skills = extract_skills(m.group(1))

    summary = sections.get("summary")
    parsed = ParsedResume(
        personal_info=personal,
        summary=" ".join(_items(summary)) if summary else None,
        experience=extract_experience(sections.get("experience", "")),
        education=_items(sections.get("education", "")),
        skills=skills,
        projects=_items(sections.get("projects", "")),
        certifications=_items(sections.get("certifications", "")),
        raw_text=text,
    )
    logger.debug(
        "Parsed resume: %d experience entries, %d skills, sections=%s",
        len(parsed.experience), len(parsed.skills), sorted(sections),
    )
    return parsed
