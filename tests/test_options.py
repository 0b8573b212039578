"""
Tests for layered option resolution.

Covers fold associativity, wildcard precedence in option and param
sections, the patch/merge difference and the per-App options store.
"""

import asyncio

import pytest

from sift.base.source import default_source_options
from sift.ext import filter_args, source_args
from sift.options import (
    ContextBuilder,
    OptionsStore,
    default_sift_options,
    fold_merge,
    merge_sift_options,
    patch_sift_options,
)


class _Named:
    def __init__(self, name, params=None):
        self.name = name
        self._params = params or {}

    def params(self):
        return dict(self._params)


LAYERS = [
    {"name": "first", "sourceOptions": {"_": {"maxItems": 5}}},
    {"input": "abc", "sourceOptions": {"file": {"path": "/tmp"}}, "filterParams": {"x": {"a": 1}}},
    {"name": "third", "sourceOptions": {"_": {"volatile": True}, "file": {"path": "/srv"}}},
]


class TestFoldMerge:
    """fold_merge and merge_sift_options."""

    def test_empty_layers_give_defaults(self):
        assert fold_merge(merge_sift_options, default_sift_options, []) == default_sift_options()

    def test_none_layers_count_as_empty(self):
        result = fold_merge(merge_sift_options, default_sift_options, [None, {"input": "x"}, None])
        assert result["input"] == "x"
        assert result["name"] == "default"

    def test_later_layer_wins_for_flat_keys(self):
        result = fold_merge(merge_sift_options, default_sift_options, LAYERS)
        assert result["name"] == "third"
        assert result["input"] == "abc"

    def test_sections_merge_per_extension(self):
        result = fold_merge(merge_sift_options, default_sift_options, LAYERS)
        assert result["sourceOptions"]["_"] == {"maxItems": 5, "volatile": True}
        assert result["sourceOptions"]["file"] == {"path": "/srv"}
        assert result["filterParams"] == {"x": {"a": 1}}

    def test_fold_is_associative(self):
        l1, l2, l3 = LAYERS

        def resolve(*layers):
            return fold_merge(merge_sift_options, default_sift_options, layers)

        assert resolve(resolve(l1, l2), l3) == resolve(l1, resolve(l2, l3))
        assert resolve(resolve(l1, l2), l3) == resolve(l1, l2, l3)

    def test_inputs_are_not_mutated(self):
        layer = {"sourceOptions": {"_": {"maxItems": 5}}}
        fold_merge(merge_sift_options, default_sift_options, [layer, {"sourceOptions": {"_": {"path": "x"}}}])
        assert layer == {"sourceOptions": {"_": {"maxItems": 5}}}


class TestWildcardPrecedence:
    """A specific extension entry always beats the "_" entry."""

    @pytest.mark.parametrize("order", ["wildcard_first", "specific_first"])
    def test_source_options(self, order):
        wildcard = {"sourceOptions": {"_": {"matcherKey": "foo"}}}
        specific = {"sourceOptions": {"strength": {"matcherKey": "bar"}}}
        layers = [wildcard, specific] if order == "wildcard_first" else [specific, wildcard]
        options = fold_merge(merge_sift_options, default_sift_options, layers)

        strength_options, _ = source_args(_Named("strength"), options, "strength")
        other_options, _ = source_args(_Named("other"), options, "other")

        assert strength_options["matcherKey"] == "bar"
        assert other_options["matcherKey"] == "foo"

    def test_defaults_apply_without_layers(self):
        options = default_sift_options()
        source_options, _ = source_args(_Named("strength"), options, "strength")
        assert source_options["matcherKey"] == "word"

    def test_params_cascade(self):
        options = fold_merge(merge_sift_options, default_sift_options, [{
            "filterParams": {"_": {"a": "wild", "b": "wild"}, "fuzzy": {"a": "specific"}},
        }])
        fuzzy = _Named("fuzzy", {"a": "default", "b": "default", "c": "default"})

        _, params = filter_args(fuzzy, options, {"name": "fuzzy", "params": {"c": "call"}})

        assert params == {"a": "specific", "b": "wild", "c": "call"}

    def test_user_source_options_win(self):
        options = fold_merge(merge_sift_options, default_sift_options, [{
            "sourceOptions": {"_": {"maxItems": 1}, "file": {"maxItems": 2}},
        }])
        source_options, _ = source_args(
            _Named("file"), options, {"name": "file", "options": {"maxItems": 3}},
        )
        assert source_options["maxItems"] == 3


class TestPatch:
    """patch_sift_options keeps partial options partial."""

    def test_patch_does_not_add_empty_sections(self):
        patched = patch_sift_options({"ui": "std"}, {"input": "x"})
        assert patched == {"ui": "std", "input": "x"}

    def test_patch_unions_extension_sections(self):
        a = {"sourceOptions": {"file": {"path": "/a"}, "line": {"maxItems": 1}}}
        b = {"sourceOptions": {"file": {"volatile": True}}}
        patched = patch_sift_options(a, b)
        assert patched["sourceOptions"] == {
            "file": {"path": "/a", "volatile": True},
            "line": {"maxItems": 1},
        }

    def test_merge_fills_every_section(self):
        merged = merge_sift_options(default_sift_options(), {"input": "x"})
        assert merged["sourceParams"] == {}
        assert merged["uiOptions"] == {}


class TestOptionsStore:
    """Global and local layers of the options store."""

    def test_local_layer_selected_by_name(self):
        store = OptionsStore()
        store.set_global({"ui": "std", "input": "global"})
        store.set_local("files", {"input": "local"})

        assert store.get({"name": "files"})["input"] == "local"
        assert store.get({"name": "other"})["input"] == "global"

    def test_user_options_beat_local(self):
        store = OptionsStore()
        store.set_local("files", {"input": "local"})
        assert store.get({"name": "files", "input": "user"})["input"] == "user"

    def test_name_may_come_from_global(self):
        store = OptionsStore()
        store.set_global({"name": "files"})
        store.set_local("files", {"input": "local"})
        assert store.get({})["input"] == "local"

    def test_patch_global_accumulates(self):
        store = OptionsStore()
        store.patch_global({"sourceOptions": {"file": {"path": "/a"}}})
        store.patch_global({"sourceOptions": {"line": {"maxItems": 1}}})
        assert set(store.global_options["sourceOptions"]) == {"file", "line"}

    def test_stores_are_independent(self):
        first, second = OptionsStore(), OptionsStore()
        first.set_global({"ui": "std"})
        assert second.get({})["ui"] == ""


class TestContextBuilder:
    """ContextBuilder.get with a real host."""

    def test_context_captures_host_state(self, host, tmp_path):
        builder = ContextBuilder()
        builder.set_global({"ui": "std"})

        context, options = asyncio.run(builder.get(host, {"input": "x"}))

        assert context.cwd == str(tmp_path)
        assert context.path == str(tmp_path)
        assert options["ui"] == "std"
        assert options["input"] == "x"

    def test_unknown_keys_are_reported(self, host, log_messages):
        builder = ContextBuilder()

        asyncio.run(builder.get(host, {
            "bogus": 1,
            "sourceOptions": {"file": {"nope": True}},
        }))

        text = "".join(log_messages)
        assert 'Invalid options: "bogus"' in text
        assert 'Invalid sourceOptions: "nope"' in text

    def test_validate_returns_false_on_unknown_key(self):
        builder = ContextBuilder()
        assert builder.validate("sourceOptions", {"path": ""}, default_source_options())
        assert not builder.validate("sourceOptions", {"what": ""}, default_source_options())
