import unittest
from unittest.mock import patch

from core.db import DB
from core.invite_code_service import (
    CODE_ALPHABET,
    CODE_STATUS_DISABLED,
    CODE_STATUS_USED,
    consume_stock_unit,
    count_stock,
    create_invite_codes,
    delete_invite_code,
    generate_code,
    generate_unique_code,
    get_invite_code,
    list_invite_codes,
    update_invite_code,
    verify_invite_code,
)
from core.models.invite_code import InviteCode
from core.setting_service import now_ms
from tests import reset_database


class InviteCodeServiceTestCase(unittest.TestCase):
    def setUp(self):
        reset_database()
        self.session = DB.get_session()

    def tearDown(self):
        self.session.close()

    def test_generate_code_alphabet_and_length(self):
        for _ in range(50):
            code = generate_code()
            self.assertEqual(len(code), 12)
            self.assertTrue(all(ch in CODE_ALPHABET for ch in code))
        for ch in "01OIL":
            self.assertNotIn(ch, CODE_ALPHABET)

    def test_generate_unique_code_retries_on_collision(self):
        existing = create_invite_codes(self.session, "monthly", count=1)[0].code
        with patch("core.invite_code_service.generate_code", side_effect=[existing, existing, "ABCDEFGHJKMN"]) as mocked:
            code = generate_unique_code(self.session)
        self.assertEqual(code, "ABCDEFGHJKMN")
        self.assertEqual(mocked.call_count, 3)

    def test_create_batch_is_unique_and_unused(self):
        codes = create_invite_codes(self.session, "yearly", count=20, note="批量", created_by="admin")
        self.assertEqual(len({x.code for x in codes}), 20)
        self.assertTrue(all(x.status == "unused" and x.expires_at == 0 for x in codes))
        self.assertEqual(len(list_invite_codes(self.session, membership_type="yearly")), 20)

    def test_create_validates_input(self):
        with self.assertRaises(ValueError):
            create_invite_codes(self.session, "weekly", count=1)
        with self.assertRaises(ValueError):
            create_invite_codes(self.session, "monthly", count=0)
        with self.assertRaises(ValueError):
            create_invite_codes(self.session, "monthly", count=101)

    def test_delete_only_unused(self):
        first, second = create_invite_codes(self.session, "monthly", count=2)
        delete_invite_code(self.session, first.code)
        self.assertIsNone(get_invite_code(self.session, first.code))

        update_invite_code(self.session, second.code, status=CODE_STATUS_USED, used_by="alice")
        with self.assertRaises(ValueError):
            delete_invite_code(self.session, second.code)
        self.assertIsNotNone(get_invite_code(self.session, second.code))

    def test_stock_excludes_expired_and_order_bound_codes(self):
        create_invite_codes(self.session, "quarterly", count=3)
        now = now_ms()
        self.session.add(
            InviteCode(code="EXPIREDCODE2", membership_type="quarterly", status="unused", created_at=now, expires_at=now - 1000)
        )
        self.session.add(
            InviteCode(code="ORDERBOUND22", membership_type="quarterly", status="unused", created_at=now, expires_at=0, order_id="ORD1")
        )
        self.session.commit()
        self.assertEqual(count_stock(self.session, "quarterly"), 3)

    def test_consume_stock_unit_retires_oldest_code(self):
        codes = create_invite_codes(self.session, "monthly", count=2)
        retired = consume_stock_unit(self.session, "monthly", "ORD42")
        self.session.commit()
        self.assertIn(retired, {x.code for x in codes})
        item = get_invite_code(self.session, retired)
        self.assertEqual(item.status, CODE_STATUS_USED)
        self.assertEqual(item.used_by, "order:ORD42")
        self.assertEqual(count_stock(self.session, "monthly"), 1)

    def test_consume_stock_unit_when_empty(self):
        self.assertIsNone(consume_stock_unit(self.session, "lifetime", "ORD43"))

    def test_verify_invite_code(self):
        code = create_invite_codes(self.session, "monthly", count=1)[0].code
        result = verify_invite_code(self.session, code.lower())
        self.assertTrue(result["valid"])
        self.assertEqual(result["data"]["membership_type"], "monthly")
        self.assertEqual(result["data"]["duration"], 30)

        self.assertFalse(verify_invite_code(self.session, "NOTEXIST2345")["valid"])

        update_invite_code(self.session, code, status=CODE_STATUS_DISABLED)
        self.assertEqual(verify_invite_code(self.session, code)["message"], "邀请码已禁用")


if __name__ == "__main__":
    unittest.main()
