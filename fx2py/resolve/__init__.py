"""Resolver package: types, construction strategies and ordering."""

from .resolve import IncludeError, IncludeTarget, Resolver, resolve
