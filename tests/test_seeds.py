from database import transaction
from errors import InvalidInput
from fairness import verify_commitment
from models import FairnessSeed
from seeds import get_or_create_active_seed, public_view, rotate, set_client_value
from settings import DEFAULT_CLIENT_SEED
from tests.support import DatabaseTestCase


class TestSeeds(DatabaseTestCase):

    async def test_active_seed_created_once(self):
        async with self.Session() as session:
            async with transaction(session):
                first = await get_or_create_active_seed(session, self.user_id, "coinflip")
                second = await get_or_create_active_seed(session, self.user_id, "coinflip")
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.client_value, DEFAULT_CLIENT_SEED)
        self.assertEqual(first.counter, 0)
        self.assertEqual(await self.count(FairnessSeed), 1)

    async def test_seeds_are_per_game(self):
        async with self.Session() as session:
            async with transaction(session):
                coinflip = await get_or_create_active_seed(session, self.user_id, "coinflip")
                dice = await get_or_create_active_seed(session, self.user_id, "dice")
        self.assertNotEqual(coinflip.id, dice.id)
        self.assertNotEqual(coinflip.server_secret, dice.server_secret)

    async def test_public_view_hides_secret(self):
        async with self.Session() as session:
            async with transaction(session):
                seed = await get_or_create_active_seed(session, self.user_id, "dice")
        view = public_view(seed)
        self.assertNotIn("server_secret", view)
        self.assertEqual(view["server_secret_hash"], seed.server_secret_hash)

    async def test_rotate_reveals_committed_secret(self):
        async with self.Session() as session:
            async with transaction(session):
                seed = await get_or_create_active_seed(session, self.user_id, "coinflip")
                published = seed.server_secret_hash
                seed.counter = 4
        async with self.Session() as session:
            async with transaction(session):
                result = await rotate(session, self.user_id, "coinflip")

        revealed = result["reveal_previous"]
        self.assertTrue(result["rotated"])
        self.assertEqual(revealed["server_secret_hash"], published)
        self.assertTrue(verify_commitment(revealed["server_secret"], published))
        self.assertEqual(revealed["last_counter"], 4)
        self.assertEqual(result["new_seed"]["counter"], 0)
        self.assertNotEqual(result["new_seed"]["server_secret_hash"], published)

        active = await self.active_seed(self.user_id, "coinflip")
        self.assertEqual(active.server_secret_hash, result["new_seed"]["server_secret_hash"])
        self.assertEqual(await self.count(FairnessSeed, FairnessSeed.active == True), 1)  # noqa: E712
        self.assertEqual(await self.count(FairnessSeed, FairnessSeed.revealed_at.isnot(None)), 1)

    async def test_rotate_without_seed(self):
        async with self.Session() as session:
            async with transaction(session):
                result = await rotate(session, self.user_id, "hilo")
        self.assertEqual(result["reveal_previous"]["last_counter"], 0)
        self.assertEqual(await self.count(FairnessSeed), 2)

    async def test_set_client_value_keeps_counter(self):
        async with self.Session() as session:
            async with transaction(session):
                seed = await get_or_create_active_seed(session, self.user_id, "dice")
                seed.counter = 3
        async with self.Session() as session:
            async with transaction(session):
                seed = await set_client_value(session, self.user_id, "dice", "  lucky  ")
        self.assertEqual(seed.client_value, "lucky")
        self.assertEqual(seed.counter, 3)

    async def test_set_client_value_validation(self):
        for value in ("", "   ", "x" * 101):
            with self.assertRaises(InvalidInput):
                async with self.Session() as session:
                    await set_client_value(session, self.user_id, "dice", value)
        async with self.Session() as session:
            async with transaction(session):
                seed = await set_client_value(session, self.user_id, "dice", "x" * 100)
        self.assertEqual(len(seed.client_value), 100)
