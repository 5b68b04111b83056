"""Text assembler for controller programs.

One instruction per line:

    MNEMONIC [line [place [address]]]   ; comment

Operands are separated by whitespace or commas and may be written in any base
Python understands (`16`, `0x10`, `0b10000`). Missing operands are zero.
`.word N` emits a raw instruction word.

    LOADPC 1 127 0x50
    SLCT_PECC_LINE 1
    START
    WAIT_READY
    FINISH
"""
import re

from vcgra import Opcode, LINE_BITS, PLACE_BITS, ADDRESS_BITS
from vcgra.decoder import encode_instruction, decode_instruction

class AsmError(ValueError):
    pass

FIELDS = (
    ("line", LINE_BITS),
    ("place", PLACE_BITS),
    ("address", ADDRESS_BITS),
)

def _number(text):
    try:
        return int(text, 0)
    except ValueError:
        raise AsmError(f"not a number: {text!r}") from None

def assemble_line(text):
    """Assembles one line of source. Returns the instruction word, or None if
    the line holds no instruction."""
    text = text.split(";", 1)[0].strip()
    if not text:
        return None
    parts = re.split(r'[,\s]+', text)
    mnemonic, args = parts[0], parts[1:]

    if mnemonic.lower() == ".word":
        if len(args) != 1:
            raise AsmError(".word takes exactly one value")
        word = _number(args[0])
        if not 0 <= word < 2 ** 32:
            raise AsmError(f"word out of range: {args[0]}")
        return word

    try:
        opcode = Opcode[mnemonic.upper()]
    except KeyError:
        raise AsmError(f"unknown instruction: {mnemonic}") from None

    if len(args) > len(FIELDS):
        raise AsmError(f"{opcode.name} takes at most {len(FIELDS)} operands")

    operands = {}
    for (name, bits), arg in zip(FIELDS, args):
        value = _number(arg)
        if not 0 <= value < 2 ** bits:
            raise AsmError(f"{name} out of range for {bits} bits: {arg}")
        operands[name] = value

    return encode_instruction(opcode, **operands)

def assemble(text):
    """Assembles a whole program. Errors name the offending line."""
    program = []
    for lineno, line in enumerate(text.splitlines(), start = 1):
        try:
            word = assemble_line(line)
        except AsmError as e:
            raise AsmError(f"line {lineno}: {e}") from None
        if word is not None:
            program.append(word)
    return program

def disassemble_word(word):
    opcode, place, line, address = decode_instruction(word)
    if not isinstance(opcode, Opcode):
        return f".word {word:#010x}"
    return f"{opcode.name} {line} {place} {address:#06x}"
