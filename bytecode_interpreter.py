# -*- coding: utf-8 -*-
"""
Bytecode interpreter: runs a loaded Program to a single integer result.
Each run owns a fresh ExecutionState (operand stack, variables, pc).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bytecode_parser import INT_MAX, INT_MIN, Instruction, Program

log = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    def __init__(self, message: str, pc: Optional[int] = None,
                 instruction: Optional[Instruction] = None):
        self.message = message
        self.pc = pc
        self.instruction = instruction
        if pc is not None:
            where = f"pc {pc}" + (f" ({instruction})" if instruction is not None else "")
            message = f"{where}: {message}"
        super().__init__(message)


class StackUnderflowError(ExecutionError):
    pass


class UnboundVariableError(ExecutionError):
    pass


class UnresolvedLabelError(ExecutionError):
    pass


class DivideByZeroError(ExecutionError):
    pass


class IntegerOverflowError(ExecutionError):
    pass


class ProgramEndError(ExecutionError):
    pass


class StepLimitExceeded(ExecutionError):
    pass


@dataclass
class ExecutionState:
    pc: int = 0
    steps: int = 0
    stack: List[int] = field(default_factory=list)
    variables: Dict[str, int] = field(default_factory=dict)

    def push(self, value: int):
        self.stack.append(value)

    def pop(self) -> int:
        if not self.stack:
            raise StackUnderflowError("Unable to get a value from an empty stack")
        return self.stack.pop()

    def read(self, name: str) -> int:
        try:
            return self.variables[name]
        except KeyError:
            raise UnboundVariableError(f"Unable to get the value of variable '{name}'") from None


def _checked(value: int) -> int:
    if not INT_MIN <= value <= INT_MAX:
        raise IntegerOverflowError(f"Result {value} overflows a 32-bit integer")
    return value


def _truncdiv(y: int, x: int) -> int:
    q = abs(y) // abs(x)
    return -q if (y < 0) != (x < 0) else q


class BytecodeInterpreter:
    def __init__(self, program: Program, max_steps: Optional[int] = None):
        self.program = program
        self.max_steps = max_steps

    def run(self) -> int:
        state = ExecutionState()
        code = self.program.instructions
        tracing = log.isEnabledFor(logging.DEBUG)

        while state.pc < len(code):
            ins = code[state.pc]
            if self.max_steps is not None and state.steps >= self.max_steps:
                raise StepLimitExceeded(f"Exceeded the limit of {self.max_steps} instructions",
                                        state.pc, ins)
            state.steps += 1
            if tracing:
                log.debug("pc=%d %-16s stack=%s", state.pc, ins, state.stack)
            try:
                result = self.step(state, ins)
            except ExecutionError as e:
                if e.pc is not None:
                    raise
                raise type(e)(e.message, state.pc, ins) from None
            if result is not None:
                return result

        raise ProgramEndError("Reached the end of the bytecode without RETURN_VALUE", state.pc)

    def step(self, state: ExecutionState, ins: Instruction) -> Optional[int]:
        """Execute one instruction. Returns the result on RETURN_VALUE, else None."""
        op, arg = ins
        next_pc = state.pc + 1

        if op == 'LOAD_VAL':
            state.push(arg)
        elif op == 'WRITE_VAR':
            state.variables[arg] = state.pop()
        elif op == 'READ_VAR':
            state.push(state.read(arg))
        elif op == 'CMP':
            state.push(_checked(state.pop() - arg))
        elif op == 'ADD':
            x, y = state.pop(), state.pop()
            state.push(_checked(x + y))
        elif op == 'SUB':
            x, y = state.pop(), state.pop()
            state.push(_checked(y - x))
        elif op == 'MULTIPLY':
            x, y = state.pop(), state.pop()
            state.push(_checked(x * y))
        elif op == 'DIVIDE':
            x, y = state.pop(), state.pop()
            if x == 0:
                raise DivideByZeroError("Divide by 0 error")
            state.push(_checked(_truncdiv(y, x)))
        elif op == 'JMP':
            next_pc = self.resolve(arg)
        elif op == 'JMP_LE':
            if state.pop() < 0:
                next_pc = self.resolve(arg)
        elif op == 'RETURN_VALUE':
            return state.pop()
        else:
            raise ExecutionError(f"Unknown instruction {op!r}")

        state.pc = next_pc
        return None

    def resolve(self, label: str) -> int:
        try:
            return self.program.labels[label]
        except KeyError:
            raise UnresolvedLabelError(f"Unable to find label {label!r}") from None


def execute(program: Program, max_steps: Optional[int] = None) -> int:
    return BytecodeInterpreter(program, max_steps=max_steps).run()
