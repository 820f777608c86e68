"""Recursive descent parser for protobuf (.proto) files.

Consumes a token stream from proto_tokenizer and produces proto AST nodes.
Parsing is fail-fast: the first unexpected token raises ProtoSyntaxError.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from protoc_parse.errors import ProtoSyntaxError

from .proto_ast import (
    Aggregate,
    Constant,
    EnumNode,
    EnumValueNode,
    ExtensionNode,
    ExtensionRangeNode,
    FieldNode,
    FileNode,
    Identifier,
    ImportNode,
    Loc,
    MessageNode,
    MethodNode,
    OneofNode,
    OptionNamePart,
    OptionNode,
    ReservedRange,
    ServiceNode,
)
from .proto_tokenizer import ProtoToken, ProtoTokenType, parse_float_literal, parse_int_literal

# Upper bound of "max" in message reserved/extension ranges.
MAX_FIELD_NUMBER = 536870911
# Upper bound of "max" in enum reserved ranges.
MAX_ENUM_NUMBER = 2147483647

_LABELS = {
    ProtoTokenType.OPTIONAL: "optional",
    ProtoTokenType.REQUIRED: "required",
    ProtoTokenType.REPEATED: "repeated",
}


class ProtoParser:
    """Recursive descent parser for .proto files."""

    def __init__(self, tokens: List[ProtoToken], path: str = "<string>"):
        self._tokens = tokens
        self._path = path
        self._pos = 0

    # -- public API --

    def parse(self) -> FileNode:
        """Parse the full token stream into a FileNode AST."""
        file_node = FileNode(path=self._path)

        if self._peek().type == ProtoTokenType.SYNTAX:
            file_node.syntax = self._parse_syntax()

        while not self._at_end():
            tt = self._peek().type

            if tt == ProtoTokenType.MESSAGE:
                file_node.messages.append(self._parse_message())
            elif tt == ProtoTokenType.ENUM:
                file_node.enums.append(self._parse_enum())
            elif tt == ProtoTokenType.SERVICE:
                file_node.services.append(self._parse_service())
            elif tt == ProtoTokenType.EXTEND:
                file_node.extends.append(self._parse_extend())
            elif tt == ProtoTokenType.IMPORT:
                file_node.imports.append(self._parse_import())
            elif tt == ProtoTokenType.PACKAGE:
                tok = self._advance()
                if file_node.package is not None:
                    raise self._error("multiple package definitions", tok)
                file_node.package = self._parse_full_ident()
                self._expect(ProtoTokenType.SEMICOLON)
            elif tt == ProtoTokenType.OPTION:
                file_node.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            elif tt == ProtoTokenType.SYNTAX:
                raise self._error("syntax statement must be the first statement in the file", self._peek())
            else:
                raise self._unexpected("a top-level declaration")

        return file_node

    # -- header statements --

    def _parse_syntax(self) -> str:
        """Parse: SYNTAX EQUALS STRING_LIT SEMICOLON"""
        self._expect(ProtoTokenType.SYNTAX)
        self._expect(ProtoTokenType.EQUALS)
        tok = self._peek()
        value = self._parse_string()
        if value not in ("proto2", "proto3"):
            raise self._error(f"unrecognized syntax identifier {value!r}, expected \"proto2\" or \"proto3\"", tok)
        self._expect(ProtoTokenType.SEMICOLON)
        return value

    def _parse_import(self) -> ImportNode:
        """Parse: IMPORT [PUBLIC|WEAK] STRING_LIT SEMICOLON"""
        tok = self._expect(ProtoTokenType.IMPORT)
        kind = "normal"
        if self._peek().type == ProtoTokenType.PUBLIC:
            self._advance()
            kind = "public"
        elif self._peek().type == ProtoTokenType.WEAK:
            self._advance()
            kind = "weak"
        path = self._parse_string()
        self._expect(ProtoTokenType.SEMICOLON)
        return ImportNode(path=path, loc=self._loc(tok), kind=kind)

    # -- messages --

    def _parse_message(self) -> MessageNode:
        """Parse: MESSAGE IDENT LBRACE body RBRACE"""
        start = self._expect(ProtoTokenType.MESSAGE)
        name_tok = self._expect_word()
        node = MessageNode(name=name_tok.value, loc=self._loc(name_tok), doc=start.comment)
        self._expect(ProtoTokenType.LBRACE)
        self._parse_message_body(node)
        self._expect(ProtoTokenType.RBRACE)
        return node

    def _parse_message_body(self, node: MessageNode) -> None:
        """Parse the contents between { and } of a message."""
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type

            if tt == ProtoTokenType.MESSAGE:
                node.messages.append(self._parse_message())
            elif tt == ProtoTokenType.ENUM:
                node.enums.append(self._parse_enum())
            elif tt == ProtoTokenType.EXTEND:
                node.extends.append(self._parse_extend())
            elif tt == ProtoTokenType.EXTENSIONS:
                node.extension_ranges.append(self._parse_extensions())
            elif tt == ProtoTokenType.OPTION:
                node.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.ONEOF:
                oneof = self._parse_oneof()
                node.oneofs.append(oneof)
                node.fields.extend(oneof.fields)
            elif tt == ProtoTokenType.RESERVED:
                self._parse_reserved(node.reserved_ranges, node.reserved_names, MAX_FIELD_NUMBER)
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                node.fields.append(self._parse_field())

    def _parse_field(self, oneof: Optional[str] = None) -> FieldNode:
        """Parse: [LABEL] (type | MAP<K,V>) IDENT EQUALS INT [options] SEMICOLON"""
        first = self._peek()
        label = None
        if first.type in _LABELS and not self._is_field_name_position():
            label = _LABELS[self._advance().type]

        if self._peek().type == ProtoTokenType.GROUP:
            raise self._error("groups are not supported", self._peek())

        map_key_type = None
        if self._peek().type == ProtoTokenType.MAP and self._peek(1).type == ProtoTokenType.LANGLE:
            map_tok = self._advance()
            if label is not None:
                raise self._error("field labels (required/optional/repeated) are not allowed on map fields", map_tok)
            self._expect(ProtoTokenType.LANGLE)
            map_key_type = self._parse_type_name()
            self._expect(ProtoTokenType.COMMA)
            type_tok = self._peek()
            type_name = self._parse_type_name()
            self._expect(ProtoTokenType.RANGLE)
        else:
            type_tok = self._peek()
            type_name = self._parse_type_name()

        name_tok = self._expect_word()
        self._expect(ProtoTokenType.EQUALS)
        num_tok = self._peek()
        number = self._parse_int(allow_negative=True)
        options = self._parse_bracket_options()
        self._expect(ProtoTokenType.SEMICOLON)

        return FieldNode(
            name=name_tok.value,
            number=number,
            type_name=type_name,
            loc=self._loc(name_tok),
            type_loc=self._loc(type_tok),
            number_loc=self._loc(num_tok),
            label=label,
            map_key_type=map_key_type,
            oneof=oneof,
            options=options,
            doc=first.comment,
        )

    def _is_field_name_position(self) -> bool:
        """True when a label keyword is actually a type name (``optional foo = 1``)."""
        nxt = self._peek(1)
        return nxt.is_word and self._peek(2).type == ProtoTokenType.EQUALS

    def _parse_oneof(self) -> OneofNode:
        """Parse: ONEOF IDENT LBRACE { field | option } RBRACE"""
        start = self._expect(ProtoTokenType.ONEOF)
        name_tok = self._expect_word()
        node = OneofNode(name=name_tok.value, loc=self._loc(name_tok), doc=start.comment)
        self._expect(ProtoTokenType.LBRACE)
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type
            if tt == ProtoTokenType.OPTION:
                node.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                node.fields.append(self._parse_field(oneof=node.name))
        self._expect(ProtoTokenType.RBRACE)
        return node

    def _parse_extensions(self) -> ExtensionRangeNode:
        """Parse: EXTENSIONS range {COMMA range} [options] SEMICOLON"""
        tok = self._expect(ProtoTokenType.EXTENSIONS)
        ranges = [self._parse_range(MAX_FIELD_NUMBER)]
        while self._peek().type == ProtoTokenType.COMMA:
            self._advance()
            ranges.append(self._parse_range(MAX_FIELD_NUMBER))
        options = self._parse_bracket_options()
        self._expect(ProtoTokenType.SEMICOLON)
        return ExtensionRangeNode(ranges=ranges, loc=self._loc(tok), options=options)

    def _parse_reserved(self, ranges: List[ReservedRange], names: List[str], max_value: int) -> None:
        """Parse: RESERVED (range {COMMA range} | STRING {COMMA STRING}) SEMICOLON"""
        self._expect(ProtoTokenType.RESERVED)
        if self._peek().type == ProtoTokenType.STRING_LIT:
            names.append(self._parse_string())
            while self._peek().type == ProtoTokenType.COMMA:
                self._advance()
                names.append(self._parse_string())
        else:
            ranges.append(self._parse_range(max_value))
            while self._peek().type == ProtoTokenType.COMMA:
                self._advance()
                ranges.append(self._parse_range(max_value))
        self._expect(ProtoTokenType.SEMICOLON)

    def _parse_range(self, max_value: int) -> ReservedRange:
        """Parse: INT [TO (INT | MAX)]"""
        tok = self._peek()
        start = self._parse_int(allow_negative=True)
        end = start
        if self._peek().type == ProtoTokenType.TO:
            self._advance()
            if self._peek().type == ProtoTokenType.MAX:
                self._advance()
                end = max_value
            else:
                end = self._parse_int(allow_negative=True)
        return ReservedRange(start=start, end=end, loc=self._loc(tok))

    def _parse_extend(self) -> ExtensionNode:
        """Parse: EXTEND type LBRACE { field } RBRACE"""
        tok = self._expect(ProtoTokenType.EXTEND)
        extendee_tok = self._peek()
        extendee = self._parse_type_name()
        node = ExtensionNode(extendee=extendee, loc=self._loc(tok), extendee_loc=self._loc(extendee_tok))
        self._expect(ProtoTokenType.LBRACE)
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            if self._peek().type == ProtoTokenType.SEMICOLON:
                self._advance()
                continue
            node.fields.append(self._parse_field())
        self._expect(ProtoTokenType.RBRACE)
        return node

    # -- enums --

    def _parse_enum(self) -> EnumNode:
        """Parse: ENUM IDENT LBRACE { value | option | reserved } RBRACE"""
        start = self._expect(ProtoTokenType.ENUM)
        name_tok = self._expect_word()
        node = EnumNode(name=name_tok.value, loc=self._loc(name_tok), doc=start.comment)
        self._expect(ProtoTokenType.LBRACE)
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type
            if tt == ProtoTokenType.OPTION:
                node.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.RESERVED:
                self._parse_reserved(node.reserved_ranges, node.reserved_names, MAX_ENUM_NUMBER)
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                node.values.append(self._parse_enum_value())
        self._expect(ProtoTokenType.RBRACE)
        return node

    def _parse_enum_value(self) -> EnumValueNode:
        """Parse: IDENT EQUALS [MINUS] INT [options] SEMICOLON"""
        name_tok = self._expect_word()
        self._expect(ProtoTokenType.EQUALS)
        number = self._parse_int(allow_negative=True)
        options = self._parse_bracket_options()
        self._expect(ProtoTokenType.SEMICOLON)
        return EnumValueNode(
            name=name_tok.value,
            number=number,
            loc=self._loc(name_tok),
            options=options,
            doc=name_tok.comment,
        )

    # -- services --

    def _parse_service(self) -> ServiceNode:
        """Parse: SERVICE IDENT LBRACE { rpc | option } RBRACE"""
        start = self._expect(ProtoTokenType.SERVICE)
        name_tok = self._expect_word()
        node = ServiceNode(name=name_tok.value, loc=self._loc(name_tok), doc=start.comment)
        self._expect(ProtoTokenType.LBRACE)
        while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
            tt = self._peek().type
            if tt == ProtoTokenType.RPC:
                node.methods.append(self._parse_method())
            elif tt == ProtoTokenType.OPTION:
                node.options.append(self._parse_option_statement())
            elif tt == ProtoTokenType.SEMICOLON:
                self._advance()
            else:
                raise self._unexpected("'rpc' or 'option'")
        self._expect(ProtoTokenType.RBRACE)
        return node

    def _parse_method(self) -> MethodNode:
        """Parse: RPC IDENT ( [STREAM] type ) RETURNS ( [STREAM] type ) (body | SEMICOLON)"""
        start = self._expect(ProtoTokenType.RPC)
        name_tok = self._expect_word()
        client_streaming, input_tok, input_type = self._parse_method_type()
        self._expect(ProtoTokenType.RETURNS)
        server_streaming, output_tok, output_type = self._parse_method_type()
        node = MethodNode(
            name=name_tok.value,
            input_type=input_type,
            output_type=output_type,
            loc=self._loc(name_tok),
            input_loc=self._loc(input_tok),
            output_loc=self._loc(output_tok),
            client_streaming=client_streaming,
            server_streaming=server_streaming,
            doc=start.comment,
        )
        if self._peek().type == ProtoTokenType.LBRACE:
            self._advance()
            while not self._at_end() and self._peek().type != ProtoTokenType.RBRACE:
                if self._peek().type == ProtoTokenType.OPTION:
                    node.options.append(self._parse_option_statement())
                else:
                    self._expect(ProtoTokenType.SEMICOLON)
            self._expect(ProtoTokenType.RBRACE)
        else:
            self._expect(ProtoTokenType.SEMICOLON)
        return node

    def _parse_method_type(self) -> Tuple[bool, ProtoToken, str]:
        self._expect(ProtoTokenType.LPAREN)
        streaming = False
        if self._peek().type == ProtoTokenType.STREAM and self._peek(1).type != ProtoTokenType.RPAREN:
            self._advance()
            streaming = True
        tok = self._peek()
        type_name = self._parse_type_name()
        self._expect(ProtoTokenType.RPAREN)
        return streaming, tok, type_name

    # -- options --

    def _parse_option_statement(self) -> OptionNode:
        """Parse: OPTION optionName EQUALS constant SEMICOLON"""
        tok = self._expect(ProtoTokenType.OPTION)
        option = self._parse_option_body(tok)
        self._expect(ProtoTokenType.SEMICOLON)
        return option

    def _parse_bracket_options(self) -> List[OptionNode]:
        """Parse an optional ``[name = value, ...]`` list."""
        options: List[OptionNode] = []
        if self._peek().type != ProtoTokenType.LBRACKET:
            return options
        self._advance()
        options.append(self._parse_option_body(self._peek()))
        while self._peek().type == ProtoTokenType.COMMA:
            self._advance()
            options.append(self._parse_option_body(self._peek()))
        self._expect(ProtoTokenType.RBRACKET)
        return options

    def _parse_option_body(self, start: ProtoToken) -> OptionNode:
        parts = [self._parse_option_name_part()]
        while self._peek().type == ProtoTokenType.DOT:
            self._advance()
            parts.append(self._parse_option_name_part())
        self._expect(ProtoTokenType.EQUALS)
        value = self._parse_constant()
        return OptionNode(name=parts, value=value, loc=self._loc(start))

    def _parse_option_name_part(self) -> OptionNamePart:
        tok = self._peek()
        if tok.type == ProtoTokenType.LPAREN:
            self._advance()
            name = self._parse_type_name()
            self._expect(ProtoTokenType.RPAREN)
            return OptionNamePart(name=name, is_extension=True, loc=self._loc(tok))
        word = self._expect_word()
        return OptionNamePart(name=word.value, is_extension=False, loc=self._loc(word))

    def _parse_constant(self) -> Constant:
        tok = self._peek()
        loc = self._loc(tok)
        if tok.type in (ProtoTokenType.MINUS, ProtoTokenType.PLUS):
            sign = -1 if self._advance().type == ProtoTokenType.MINUS else 1
            num = self._peek()
            if num.type == ProtoTokenType.INT_LIT:
                self._advance()
                return Constant(sign * parse_int_literal(num.value), loc)
            if num.type == ProtoTokenType.FLOAT_LIT:
                self._advance()
                return Constant(sign * parse_float_literal(num.value), loc)
            if num.type == ProtoTokenType.IDENT and num.value in ("inf", "nan"):
                self._advance()
                return Constant(sign * float(num.value), loc)
            raise self._unexpected("a number")
        if tok.type == ProtoTokenType.INT_LIT:
            self._advance()
            return Constant(parse_int_literal(tok.value), loc)
        if tok.type == ProtoTokenType.FLOAT_LIT:
            self._advance()
            return Constant(parse_float_literal(tok.value), loc)
        if tok.type == ProtoTokenType.STRING_LIT:
            data = b""
            while self._peek().type == ProtoTokenType.STRING_LIT:
                data += self._advance().data
            return Constant(data, loc)
        if tok.type == ProtoTokenType.LBRACE:
            return Constant(Aggregate(self._parse_aggregate_text()), loc)
        if tok.is_word:
            name = self._parse_full_ident()
            if name == "true":
                return Constant(True, loc)
            if name == "false":
                return Constant(False, loc)
            return Constant(Identifier(name), loc)
        raise self._unexpected("a constant")

    def _parse_aggregate_text(self) -> str:
        """Consume a balanced ``{ ... }`` block and return its inner text."""
        self._expect(ProtoTokenType.LBRACE)
        depth = 1
        pieces: List[str] = []
        while depth > 0:
            tok = self._peek()
            if tok.type == ProtoTokenType.EOF:
                raise self._unexpected("'}'")
            self._advance()
            if tok.type == ProtoTokenType.LBRACE:
                depth += 1
            elif tok.type == ProtoTokenType.RBRACE:
                depth -= 1
                if depth == 0:
                    break
            if tok.type == ProtoTokenType.STRING_LIT:
                pieces.append('"' + tok.value + '"')
            else:
                pieces.append(tok.value)
        return " ".join(pieces)

    # -- names and literals --

    def _parse_type_name(self) -> str:
        """Parse: [DOT] IDENT {DOT IDENT}"""
        prefix = ""
        if self._peek().type == ProtoTokenType.DOT:
            self._advance()
            prefix = "."
        return prefix + self._parse_full_ident()

    def _parse_full_ident(self) -> str:
        parts = [self._expect_word().value]
        while self._peek().type == ProtoTokenType.DOT:
            self._advance()
            parts.append(self._expect_word().value)
        return ".".join(parts)

    def _parse_string(self) -> str:
        data = self._expect(ProtoTokenType.STRING_LIT).data
        while self._peek().type == ProtoTokenType.STRING_LIT:
            data += self._advance().data
        return data.decode("utf-8", errors="replace")

    def _parse_int(self, *, allow_negative: bool) -> int:
        sign = 1
        if allow_negative and self._peek().type == ProtoTokenType.MINUS:
            self._advance()
            sign = -1
        tok = self._expect(ProtoTokenType.INT_LIT)
        return sign * parse_int_literal(tok.value)

    # -- token helpers --

    def _peek(self, offset: int = 0) -> ProtoToken:
        idx = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[idx]

    def _advance(self) -> ProtoToken:
        tok = self._tokens[self._pos]
        if tok.type != ProtoTokenType.EOF:
            self._pos += 1
        return tok

    def _expect(self, expected: ProtoTokenType) -> ProtoToken:
        tok = self._peek()
        if tok.type != expected:
            raise self._error(
                f"Expected {expected.name}, got {tok.type.name} ({tok.value!r})",
                tok,
            )
        return self._advance()

    def _expect_word(self) -> ProtoToken:
        tok = self._peek()
        if not tok.is_word:
            raise self._error(f"Expected identifier, got {tok.type.name} ({tok.value!r})", tok)
        return self._advance()

    def _at_end(self) -> bool:
        return self._tokens[self._pos].type == ProtoTokenType.EOF

    def _loc(self, tok: ProtoToken) -> Loc:
        return Loc(self._path, tok.line, tok.col)

    def _error(self, message: str, tok: ProtoToken) -> ProtoSyntaxError:
        return ProtoSyntaxError(message, self._loc(tok))

    def _unexpected(self, what: str) -> ProtoSyntaxError:
        tok = self._peek()
        found = "end of file" if tok.type == ProtoTokenType.EOF else repr(tok.value)
        return self._error(f"Expected {what}, got {found}", tok)
