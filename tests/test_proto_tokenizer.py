import pytest

from protoc_parse.errors import ProtoSyntaxError
from protoc_parse.parser.proto_ast import Loc
from protoc_parse.parser.proto_tokenizer import (
    ProtoTokenType,
    iter_proto_tokens,
    parse_float_literal,
    parse_int_literal,
    tokenize_proto,
)


def _types(text: str):
    return [t.type for t in tokenize_proto(text)]


class TestBasicTokens:
    def test_message_declaration(self):
        assert _types("message Foo { int32 x = 1; }") == [
            ProtoTokenType.MESSAGE,
            ProtoTokenType.IDENT,
            ProtoTokenType.LBRACE,
            ProtoTokenType.IDENT,
            ProtoTokenType.IDENT,
            ProtoTokenType.EQUALS,
            ProtoTokenType.INT_LIT,
            ProtoTokenType.SEMICOLON,
            ProtoTokenType.RBRACE,
            ProtoTokenType.EOF,
        ]

    def test_positions_are_one_based(self):
        tokens = tokenize_proto('syntax = "proto3";\nmessage Foo {}')
        assert (tokens[0].line, tokens[0].col) == (1, 1)
        assert (tokens[2].line, tokens[2].col) == (1, 10)
        message = tokens[4]
        assert message.type == ProtoTokenType.MESSAGE
        assert (message.line, message.col) == (2, 1)

    def test_keywords_are_words(self):
        tokens = tokenize_proto("message map to max")
        assert all(t.is_word for t in tokens[:-1])
        assert tokens[1].type == ProtoTokenType.MAP

    def test_scalar_type_names_are_identifiers(self):
        tokens = tokenize_proto("int32 string bytes")
        assert [t.type for t in tokens[:-1]] == [ProtoTokenType.IDENT] * 3


class TestNumbers:
    def test_integer_literals(self):
        tokens = tokenize_proto("42 0x1F 017 0")
        assert [t.type for t in tokens[:-1]] == [ProtoTokenType.INT_LIT] * 4
        assert [parse_int_literal(t.value) for t in tokens[:-1]] == [42, 31, 15, 0]

    def test_float_literals(self):
        tokens = tokenize_proto("1.5 .25 1e3 2.5E-2")
        assert [t.type for t in tokens[:-1]] == [ProtoTokenType.FLOAT_LIT] * 4
        assert [parse_float_literal(t.value) for t in tokens[:-1]] == [1.5, 0.25, 1000.0, 0.025]

    def test_inf_and_nan_are_identifiers(self):
        tokens = tokenize_proto("inf nan")
        assert tokens[0].type == ProtoTokenType.IDENT
        assert tokens[1].type == ProtoTokenType.IDENT

    def test_number_followed_by_identifier(self):
        with pytest.raises(ProtoSyntaxError):
            tokenize_proto("123abc")

    def test_invalid_octal(self):
        with pytest.raises(ProtoSyntaxError):
            tokenize_proto("x = 08;")

    def test_malformed_exponent(self):
        with pytest.raises(ProtoSyntaxError):
            tokenize_proto("1e;")


class TestStrings:
    def test_escapes_are_decoded(self):
        tokens = tokenize_proto(r'"a\n\x41\101é"')
        assert tokens[0].type == ProtoTokenType.STRING_LIT
        assert tokens[0].data == b"a\nAA\xc3\xa9"

    def test_single_quotes(self):
        tokens = tokenize_proto("'it\\'s'")
        assert tokens[0].data == b"it's"

    def test_unterminated_string_position(self):
        with pytest.raises(ProtoSyntaxError) as exc:
            tokenize_proto('x = "abc')
        assert exc.value.loc == Loc("<string>", 1, 5)

    def test_newline_inside_string(self):
        with pytest.raises(ProtoSyntaxError):
            tokenize_proto('"abc\ndef"')

    def test_invalid_escape(self):
        with pytest.raises(ProtoSyntaxError):
            tokenize_proto(r'"\q"')


class TestComments:
    def test_comments_are_skipped(self):
        assert _types("// line\n/* block */ message") == [ProtoTokenType.MESSAGE, ProtoTokenType.EOF]

    def test_leading_comment_attached_to_next_token(self):
        tokens = tokenize_proto("// The order.\nmessage Order {}")
        assert tokens[0].comment == "The order."
        assert tokens[1].comment is None

    def test_block_comment_stars_stripped(self):
        tokens = tokenize_proto("/**\n * First.\n * Second.\n */\nenum E {}")
        assert tokens[0].comment == "First.\nSecond."

    def test_unterminated_block_comment(self):
        with pytest.raises(ProtoSyntaxError) as exc:
            tokenize_proto("message /* oops")
        assert exc.value.loc == Loc("<string>", 1, 9)


class TestLaziness:
    def test_tokens_before_error_are_produced(self):
        tokens = iter_proto_tokens("message @")
        assert next(tokens).type == ProtoTokenType.MESSAGE
        with pytest.raises(ProtoSyntaxError) as exc:
            next(tokens)
        assert "'@'" in str(exc.value)

    def test_rescan_from_start(self):
        text = "enum E { A = 0; }"
        assert tokenize_proto(text) == list(iter_proto_tokens(text))

    def test_path_in_error_location(self):
        with pytest.raises(ProtoSyntaxError) as exc:
            tokenize_proto("$", "shop/order.proto")
        assert str(exc.value).startswith("shop/order.proto:1:1: ")
