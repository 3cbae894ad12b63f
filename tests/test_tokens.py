"""Unit tests for TokenCounter."""

import tiktoken

from chat import TokenCounter
from chat import tokens as tokens_module


class CharEncoding:
    def __init__(self):
        self.calls = []

    def encode(self, text, **kwargs):
        self.calls.append(kwargs)
        return list(range(len(text)))


def test_count_uses_injected_encoding():
    counter = TokenCounter(encoding=CharEncoding())
    assert counter.count("hello") == 5
    assert counter("hi") == 2


def test_empty_text_counts_zero_without_loading_encoding(monkeypatch):
    def boom(*args, **kwargs):
        raise AssertionError("encoding should not be loaded")

    monkeypatch.setattr(tiktoken, "encoding_for_model", boom)
    monkeypatch.setattr(tiktoken, "get_encoding", boom)
    assert TokenCounter("gpt-3.5-turbo").count("") == 0


def test_special_tokens_are_counted_as_text():
    encoding = CharEncoding()
    TokenCounter(encoding=encoding).count("<|endoftext|>")
    assert encoding.calls == [{"disallowed_special": ()}]


def test_model_encoding_is_resolved_lazily(monkeypatch):
    requested = []

    def encoding_for_model(model):
        requested.append(model)
        return CharEncoding()

    monkeypatch.setattr(tiktoken, "encoding_for_model", encoding_for_model)
    counter = TokenCounter("gpt-4o-mini")
    assert requested == []
    assert counter.count("abc") == 3
    assert counter.count("abcd") == 4
    assert requested == ["gpt-4o-mini"]


def test_unknown_model_falls_back_to_cl100k(monkeypatch):
    def encoding_for_model(model):
        raise KeyError(model)

    fetched = []

    def get_encoding(name):
        fetched.append(name)
        return CharEncoding()

    monkeypatch.setattr(tiktoken, "encoding_for_model", encoding_for_model)
    monkeypatch.setattr(tiktoken, "get_encoding", get_encoding)
    assert TokenCounter("my-local-model").count("xyz") == 3
    assert fetched == [tokens_module.FALLBACK_ENCODING]
