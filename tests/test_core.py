from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from scenesync.config.models import AppSettings, EngineSettings, ServerSettings
from scenesync.config.store import SettingsStore, apply_setting, with_engine_overrides
from scenesync.scene.cancellation import BuildCancelled, GenerationCounter
from scenesync.scene.model import SceneNode, icon_for_type


class SettingsStoreTests(unittest.TestCase):
    def test_load_save_update_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            store = SettingsStore(path)

            settings = store.load()
            self.assertTrue(path.exists())
            self.assertEqual(settings.schema_version, 1)
            self.assertEqual(settings.engine.strategy, "staged")
            self.assertEqual(settings.engine.concurrency_limit, 6)

            updated = store.update("engine.strategy", "eager")
            self.assertEqual(updated.engine.strategy, "eager")

            reloaded = store.load()
            self.assertEqual(reloaded.engine.strategy, "eager")

    def test_update_rejects_unknown_paths(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = SettingsStore(Path(tmp) / "settings.json")
            with self.assertRaises(KeyError):
                store.update("engine.turbo", True)
            with self.assertRaises(KeyError):
                store.update("nope.value", 1)

    def test_corrupt_file_is_backed_up(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text("{not json", encoding="utf-8")

            settings = SettingsStore(path).load()
            self.assertEqual(settings, AppSettings())
            self.assertEqual(path.with_suffix(".corrupt.json").read_text(encoding="utf-8"), "{not json")
            self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["schema_version"], 1)

    def test_apply_setting_validates_and_copies(self) -> None:
        base = AppSettings()
        changed = apply_setting(base, "server.timeout_s", 2.5)

        self.assertEqual(changed.server.timeout_s, 2.5)
        self.assertEqual(base.server.timeout_s, AppSettings().server.timeout_s)
        with self.assertRaises(ValidationError):
            apply_setting(base, "engine.concurrency_limit", 0)
        with self.assertRaises(KeyError):
            apply_setting(base, "engine.strategy.kind", "eager")

    def test_engine_overrides_skip_unset_values(self) -> None:
        settings = with_engine_overrides(AppSettings(), strategy="eager", concurrency_limit=None, max_depth=8)

        self.assertEqual(settings.engine.strategy, "eager")
        self.assertEqual(settings.engine.concurrency_limit, 6)
        self.assertEqual(settings.engine.max_depth, 8)


class SettingsModelTests(unittest.TestCase):
    def test_engine_limits_are_validated(self) -> None:
        with self.assertRaises(ValidationError):
            EngineSettings(concurrency_limit=0)
        with self.assertRaises(ValidationError):
            EngineSettings(strategy="random")

    def test_server_url_is_normalized(self) -> None:
        self.assertEqual(ServerSettings(url="http://host:1/").url, "http://host:1")

    def test_setting_items_flattens_nested_models(self) -> None:
        items = dict(AppSettings().setting_items())
        self.assertEqual(items["engine.visible_batch_size"], "10")
        self.assertEqual(items["server.url"], "http://127.0.0.1:45769")


class CancellationTokenTests(unittest.TestCase):
    def test_next_generation_invalidates_previous(self) -> None:
        counter = GenerationCounter()
        first = counter.next_token()
        first.check()
        second = counter.next_token()

        self.assertFalse(first.is_current)
        self.assertTrue(second.is_current)
        with self.assertRaises(BuildCancelled) as caught:
            first.check()
        self.assertEqual(caught.exception.generation, first.generation)

    def test_cancellation_is_not_an_error(self) -> None:
        from scenesync.scene.errors import SceneSyncError

        self.assertFalse(issubclass(BuildCancelled, SceneSyncError))


class SceneNodeTests(unittest.TestCase):
    def test_icon_hints(self) -> None:
        self.assertEqual(icon_for_type("NT_MAT_DIFFUSE"), "node")
        self.assertEqual(icon_for_type("PT_TEXTURE"), "texture")
        self.assertEqual(icon_for_type("", "Main camera"), "camera")
        self.assertEqual(icon_for_type(None, "thing"), "unknown")

    def test_to_dict_marks_cycles(self) -> None:
        left = SceneNode(1, "left")
        right = SceneNode(2, "right")
        left.children = [right]
        right.children = [left]

        payload = left.to_dict()
        self.assertEqual(payload["children"][0]["handle"], 2)
        self.assertTrue(payload["children"][0]["children"][0]["ref"])
        self.assertEqual([node.handle for node in left.walk()], [1, 2])


if __name__ == "__main__":
    unittest.main()
