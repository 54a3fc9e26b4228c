# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for integration tests.

Provides a representative Python project structure for end-to-end indexing.
"""

from pathlib import Path

import pytest

from codebase_index.config import Config


@pytest.fixture
def sample_project(tmp_path: Path) -> Path:
    """Create a representative Python project structure for integration testing.

    Creates a multi-module project with:
    - Package structure with __init__.py files
    - Class inheritance across files, an ABC and a Protocol
    - Enums, nested classes, properties and annotated attributes
    - Files that must be left out (syntax error, dependency directory,
      secrets, non-Python files)

    Returns:
        Path to the project root directory
    """
    project_root = tmp_path / "sample_project"
    pkg_dir = project_root / "shop"
    models_dir = pkg_dir / "models"
    models_dir.mkdir(parents=True)

    (pkg_dir / "__init__.py").write_text(
        '''"""Shop package."""

from .models.order import Order
'''
    )

    (models_dir / "__init__.py").write_text("")

    (models_dir / "base.py").write_text(
        '''"""Base model types."""

from abc import ABC, abstractmethod
from typing import Protocol


class Identified(Protocol):
    """Anything with an identifier."""

    def identifier(self) -> str: ...


class BaseModel(ABC):
    """Root of all persisted models.

    Subclasses provide validation.
    """

    id: int

    def __init__(self, id: int) -> None:
        self.id = id

    @abstractmethod
    def validate(self) -> bool:
        """Check invariants."""

    @staticmethod
    def table_name() -> str:
        return "models"
'''
    )

    (models_dir / "order.py").write_text(
        '''"""Orders."""

from enum import Enum
from typing import List, Optional

from .base import BaseModel, Identified


class Status(Enum):
    PENDING = "pending"
    SHIPPED = "shipped"


class Order(BaseModel, Identified):
    """A customer order."""

    status: Status
    notes: Optional[str] = None

    def validate(self) -> bool:
        return True

    def identifier(self) -> str:
        return f"order-{self.id}"

    async def ship(self, carrier: str, *, express: bool = False) -> None:
        """Hand the order to a carrier."""

    @property
    def total(self) -> float:
        """Sum of all lines."""
        return 0.0

    class Line:
        sku: str
        quantity: int = 1

        def subtotal(self, prices: List[float]) -> float:
            return 0.0
'''
    )

    (pkg_dir / "broken.py").write_text("class Broken(BaseModel\n    pass\n")
    (pkg_dir / "README.md").write_text("# Shop\n")

    vendored = project_root / "node_modules" / "pkg"
    vendored.mkdir(parents=True)
    (vendored / "vendored.py").write_text("class Vendored:\n    pass\n")

    (project_root / ".env").write_text("SECRET=1\n")

    return project_root


@pytest.fixture
def offline_config(tmp_path: Path) -> Config:
    """Configuration that never downloads a tiktoken encoding."""
    return Config(
        config_path=tmp_path / "no-config.yml",
        overrides={"count_tokens": False},
    )
