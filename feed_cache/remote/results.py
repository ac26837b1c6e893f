"""
Structured outcomes for remote calls whose callers must tell "try again" from "give up".
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class RemoteSuccess(Generic[T]):
    data: T
    success: bool = True
    timeout: bool = False
    not_found: bool = False


@dataclass(frozen=True)
class RemoteTimeout:
    success: bool = False
    timeout: bool = True
    not_found: bool = False


@dataclass(frozen=True)
class RemoteNotFound:
    success: bool = False
    timeout: bool = False
    not_found: bool = True


RemoteResult = Union[RemoteSuccess[T], RemoteTimeout, RemoteNotFound]
