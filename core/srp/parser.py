"""
Parse SRP mail bodies.

Claimants paste either an in-game kill report link
(``<a href="killReport:130838826:4b79...">Kill: Pilot (Nemesis)</a>``)
or a zKillboard URL. In-game links carry the verification hash, zKillboard
links only the killmail id.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from bs4 import BeautifulSoup

KILL_REPORT_RE = re.compile(r'killReport:(\d+):([a-f0-9]{40})', re.IGNORECASE)
ZKILLBOARD_RE = re.compile(r'zkillboard\.com/kill/(\d+)', re.IGNORECASE)
CLAIMED_SHIP_RE = re.compile(r'Kill:\s*[^()]*?\(([^()]+)\)')
URL_RE = re.compile(r'(?:https?://\S+|killReport:\S+)', re.IGNORECASE)

SOURCE_KILL_REPORT = 'killReport'
SOURCE_ZKILLBOARD = 'zkillboard'


@dataclass(frozen=True)
class KillmailReference:
    killmail_id: int
    killmail_hash: Optional[str]
    source: str

    @property
    def url(self) -> str:
        return f'https://zkillboard.com/kill/{self.killmail_id}/'


@dataclass
class ParsedMail:
    references: list[KillmailReference] = field(default_factory=list)
    claimed_ship_name: str = ''
    notes: str = ''

    @property
    def killmail_ids(self) -> list[int]:
        return [ref.killmail_id for ref in self.references]

    @property
    def is_empty(self) -> bool:
        return not self.references

    @property
    def is_multiple(self) -> bool:
        return len(self.references) > 1


def extract_references(body: str) -> list[KillmailReference]:
    """
    Find killmail references in order of appearance, one per killmail id.

    When the same killmail appears both ways the in-game link wins, since
    it carries the hash.
    """
    found = []
    for match in KILL_REPORT_RE.finditer(body):
        found.append((match.start(), KillmailReference(int(match.group(1)), match.group(2).lower(),
                                                       SOURCE_KILL_REPORT)))
    for match in ZKILLBOARD_RE.finditer(body):
        found.append((match.start(), KillmailReference(int(match.group(1)), None, SOURCE_ZKILLBOARD)))
    found.sort(key=lambda item: item[0])

    by_id = {}
    for _, ref in found:
        existing = by_id.get(ref.killmail_id)
        if existing is None or (existing.killmail_hash is None and ref.killmail_hash):
            by_id[ref.killmail_id] = ref
    # dicts keep first-insertion order, replacement keeps the slot
    return list(by_id.values())


def parse_mail_body(body: str) -> ParsedMail:
    """Turn a raw ESI mail body into killmail references, claimed ship and notes."""
    if not body:
        return ParsedMail()

    references = extract_references(body)

    soup = BeautifulSoup(body, 'html.parser')
    for br in soup.find_all('br'):
        br.replace_with('\n')
    text = soup.get_text()

    claimed_ship_name = ''
    ship_match = CLAIMED_SHIP_RE.search(text)
    if ship_match:
        claimed_ship_name = ship_match.group(1).strip()

    for link in soup.find_all('a'):
        link.decompose()
    notes = URL_RE.sub('', soup.get_text())
    notes = '\n'.join(line.strip() for line in notes.splitlines() if line.strip())

    return ParsedMail(references=references, claimed_ship_name=claimed_ship_name, notes=notes)
