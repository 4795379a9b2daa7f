"""Unit tests for key templating."""

from unittest.mock import Mock

from redis_reputation.task import EmailAddress, MessageTask
from redis_reputation.templating import (
    KeyExpansionContext,
    expand_template,
    registered_domain,
)


class TestRegisteredDomain:
    def test_last_two_labels(self):
        """The domain is lowercased and cut to two labels."""
        assert registered_domain("mail.Example.COM") == "example.com"

    def test_single_label(self):
        assert registered_domain("localhost") == "localhost"

    def test_empty(self):
        """An empty domain has no eSLD."""
        assert registered_domain("") is None

    def test_multi_label_suffix_not_recognized(self):
        """Without a public-suffix list, co.uk is taken as the domain."""
        assert registered_domain("mail.example.co.uk") == "co.uk"


class TestKeyExpansionContext:
    def test_fields_from_task(self, task):
        """Fields are derived from the task."""
        ctx = KeyExpansionContext(task)
        assert ctx.get("ip") == "192.0.2.1"
        assert ctx.get("from") == "user@mail.example.com"
        assert ctx.get("from_domain") == "mail.example.com"
        assert ctx.get("principal_recipient_domain") == "example.org"
        assert ctx.get("esld_from_domain") == "example.com"

    def test_field_names_are_case_insensitive(self, task):
        """Field names match regardless of case."""
        ctx = KeyExpansionContext(task)
        assert ctx.get("IP") == "192.0.2.1"

    def test_from_domain_falls_back_to_helo(self, loop):
        """Without a sender, from_domain falls back to HELO."""
        task = MessageTask(loop=loop, helo="mx.example.net")
        ctx = KeyExpansionContext(task)
        assert ctx.get("from_domain_or_helo_domain") == "mx.example.net"
        assert ctx.get("from_domain") is None

    def test_each_field_computed_once(self, task):
        """Each field is derived at most once."""
        task.get_ip = Mock(return_value="192.0.2.1")
        ctx = KeyExpansionContext(task)
        ctx.get("ip")
        ctx.get("ip")
        ctx.get("Ip")
        task.get_ip.assert_called_once()
        assert ctx.computed == {"ip": "192.0.2.1"}

    def test_absent_fields_without_task(self):
        """Every field is absent without a task."""
        ctx = KeyExpansionContext(None)
        assert ctx.get("ip") is None
        assert ctx.get("esld_from_domain") is None

    def test_unknown_field(self, task):
        """Unknown fields are absent."""
        assert KeyExpansionContext(task).get("nope") is None

    def test_custom_tld_func(self, task):
        """A custom tld_func replaces the eSLD derivation."""
        ctx = KeyExpansionContext(task, tld_func=lambda d: "psl:" + d)
        assert ctx.get("esld_from_domain") == "psl:mail.example.com"


class TestExpandTemplate:
    def test_expands_placeholders(self, task):
        """Placeholders are replaced by their field values."""
        ctx = KeyExpansionContext(task)
        assert expand_template("rl:{{ip}}:{{ from_domain }}", ctx) == (
            "rl:192.0.2.1:mail.example.com"
        )

    def test_absent_field_renders_empty(self, loop):
        """Absent fields render as empty strings."""
        ctx = KeyExpansionContext(MessageTask(loop=loop))
        assert expand_template("rl:{{mime_from}}", ctx) == "rl:"

    def test_untemplated_strings_untouched(self, task):
        """Strings without placeholders are returned as-is."""
        ctx = KeyExpansionContext(task)
        assert expand_template("plain", ctx) == "plain"
        assert ctx.computed == {}

    def test_non_string_returned_unchanged(self, task):
        """Non-string arguments pass through."""
        ctx = KeyExpansionContext(task)
        assert expand_template(42, ctx) == 42
        assert expand_template(b"{{ip}}", ctx) == b"{{ip}}"

    def test_mime_from(self, loop):
        """MIME sender fields are available."""
        task = MessageTask(loop=loop, mime_from=EmailAddress.parse("<A@Example.com>"))
        ctx = KeyExpansionContext(task)
        assert expand_template("{{mime_from_domain}}", ctx) == "example.com"
