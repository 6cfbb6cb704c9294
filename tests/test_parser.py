"""
Tests for SRP mail body parsing.
"""

from core.srp.parser import SOURCE_KILL_REPORT, SOURCE_ZKILLBOARD, extract_references, parse_mail_body

HASH = '4b79f2c5d8e1a3b6c9f0e7d4a1b8c5e2f9d6a3b0'


class TestExtractReferences:

    def test_in_game_kill_report_link(self):
        refs = extract_references(f'<a href="killReport:130838826:{HASH}">Kill: Test Pilot (Nemesis)</a>')

        assert len(refs) == 1
        assert refs[0].killmail_id == 130838826
        assert refs[0].killmail_hash == HASH
        assert refs[0].source == SOURCE_KILL_REPORT

    def test_zkillboard_url(self):
        refs = extract_references('Lost it here https://zkillboard.com/kill/130838826/ sorry')

        assert len(refs) == 1
        assert refs[0].killmail_id == 130838826
        assert refs[0].killmail_hash is None
        assert refs[0].source == SOURCE_ZKILLBOARD

    def test_same_killmail_both_ways_keeps_hashed_reference(self):
        body = f'https://zkillboard.com/kill/130838826/ <a href="killReport:130838826:{HASH}">Kill</a>'

        refs = extract_references(body)

        assert len(refs) == 1
        assert refs[0].killmail_hash == HASH

    def test_references_keep_order_of_appearance(self):
        body = f'https://zkillboard.com/kill/2/ then <a href="killReport:1:{HASH}">Kill</a>'

        assert [ref.killmail_id for ref in extract_references(body)] == [2, 1]

    def test_hash_is_lowercased(self):
        refs = extract_references(f'killReport:5:{HASH.upper()}')

        assert refs[0].killmail_hash == HASH


class TestParseMailBody:

    def test_empty_body(self):
        parsed = parse_mail_body('')

        assert parsed.is_empty
        assert not parsed.is_multiple

    def test_body_without_links(self):
        parsed = parse_mail_body('Hi, please SRP my ship thanks')

        assert parsed.is_empty

    def test_claimed_ship_name_and_notes(self):
        body = (
            f'<font size="12">Lost during the roam<br>'
            f'<a href="killReport:130838826:{HASH}">Kill: Test Pilot (Nemesis)</a><br>'
            f'Polarized fit</font>'
        )

        parsed = parse_mail_body(body)

        assert parsed.killmail_ids == [130838826]
        assert parsed.claimed_ship_name == 'Nemesis'
        assert parsed.notes == 'Lost during the roam\nPolarized fit'

    def test_urls_removed_from_notes(self):
        parsed = parse_mail_body('Fleet op loss https://zkillboard.com/kill/42/')

        assert parsed.notes == 'Fleet op loss'

    def test_multiple_killmails(self):
        parsed = parse_mail_body('https://zkillboard.com/kill/1/<br>https://zkillboard.com/kill/2/')

        assert parsed.is_multiple
        assert parsed.killmail_ids == [1, 2]

    def test_reference_url_points_at_zkillboard(self):
        parsed = parse_mail_body(f'killReport:77:{HASH}')

        assert parsed.references[0].url == 'https://zkillboard.com/kill/77/'
