# Boundary schemas: request payloads and declarative scraper configs
from .base import BaseParamsModel
from .scraper_config import DeclarativeConfig, FieldSelector
from .requests import parse_payload, parse_query

__all__ = [
    'BaseParamsModel',
    'DeclarativeConfig',
    'FieldSelector',
    'parse_payload',
    'parse_query',
]
