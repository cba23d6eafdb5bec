"""Short-code generation over a configured code space.

This module draws random fixed-length codes from a configured alphabet and
answers questions about the code space itself (how big it is, how full it
is, how likely a collision has become).

Flow Diagram — generate_batch()
===============================
::
    ┌─────────────┐
    │ total_count │
    │ exclude_set │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Split into   │
    │ chunks of    │
    │ batch_size   │
    └──────┬──────┘
           ▼
    ┌─────────────┐      ┌──────────────┐
    │ generate_   │◄─────┤ exclude_set + │
    │ many(chunk) │      │ codes so far  │
    └──────┬──────┘      └──────────────┘
           ▼
    ┌─────────────┐
    │ on_progress  │
    │ + yield to   │
    │ event loop   │
    └──────┬──────┘
    MORE?  │
    ┌─────┴─────┐
    │ YES        │ NO
    ▼            ▼
  (loop)     ┌─────────┐
             │ Return  │
             │ codes   │
             └─────────┘

How to Use
===========
**Step 1 — Build from settings**::
    generator = ShortCodeGenerator.from_settings(settings)

**Step 2 — Generate**::
    code = generator.generate_one()
    codes = generator.generate_many(100, exclude_set={"abc12"})
    codes = await generator.generate_batch(1_000_000, used_codes)

**Step 3 — Inspect the code space**::
    stats = generator.get_code_space_statistics(current_pool_size=100)

Key Behaviours
===============
- Sampling is uniform per character (nanoid, backed by os.urandom).
- A single generate_one() call carries no uniqueness guarantee.
- generate_many() gives up after 10 draws per requested code and returns
  what it has, logging a warning; callers check the returned length.
- generate_batch() awaits the event loop after each chunk so a large
  population run never monopolises it.

Classes:
    ShortCodeGenerator:  Stateless generator bound to one code space.
"""

import asyncio
import math
import string
from collections.abc import Callable, Iterable

from nanoid import generate

from codepool.config import Settings
from codepool.logger import setup_logger
from codepool.schemas import CodeSpaceStatistics, GenerationProgress, GeneratorConfiguration

__all__ = ["MAX_ATTEMPTS_PER_CODE", "ProgressCallback", "ShortCodeGenerator"]

MAX_ATTEMPTS_PER_CODE = 10

ProgressCallback = Callable[[GenerationProgress], None]


class ShortCodeGenerator:
    """Random short-code generator for one (charset, length) code space."""

    def __init__(
        self,
        charset: str,
        length: int,
        batch_size: int = 50_000,
        pool_size: int = 1_000_000,
        log_level: str | int = "INFO",
    ) -> None:
        assert charset, "charset must not be empty"
        assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
        assert isinstance(batch_size, int) and batch_size > 0, f"batch_size must be positive, got {batch_size!r}"
        self.charset = charset
        self.length = length
        self.batch_size = batch_size
        self.pool_size = pool_size
        self._charset_members = frozenset(charset)
        self.logger = setup_logger("short-code-generator", log_level)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShortCodeGenerator":
        return cls(
            charset=settings.SHORT_CODE_CHARSET,
            length=settings.SHORT_CODE_LENGTH,
            batch_size=settings.SHORT_CODE_GENERATION_BATCH_SIZE,
            pool_size=settings.SHORT_CODE_POOL_SIZE,
            log_level=settings.LOG_LEVEL,
        )

    # ========================================================================
    # GENERATION
    # ========================================================================

    def generate_one(self) -> str:
        return generate(self.charset, self.length)

    def generate_many(self, count: int, exclude_set: set[str] | frozenset[str] | None = None) -> list[str]:
        """Draw up to ``count`` distinct codes that are not in ``exclude_set``.

        Stops after ``10 * count`` draws. A short result is not an error;
        it means the code space is close to exhausted relative to ``count``.
        """
        assert isinstance(count, int) and count >= 0, f"count must be a non-negative integer, got {count!r}"
        exclude = exclude_set if exclude_set is not None else frozenset()

        codes: dict[str, None] = {}
        max_attempts = count * MAX_ATTEMPTS_PER_CODE
        attempts = 0
        while len(codes) < count and attempts < max_attempts:
            code = self.generate_one()
            if code not in exclude and code not in codes:
                codes[code] = None
            attempts += 1

        if len(codes) < count:
            self.logger.warning(
                f"Could not generate requested number of unique codes: "
                f"requested={count} generated={len(codes)} attempts={attempts}"
            )
        return list(codes)

    async def generate_batch(
        self,
        total_count: int,
        exclude_set: Iterable[str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[str]:
        assert isinstance(total_count, int) and total_count >= 0, f"total_count must be non-negative, got {total_count!r}"
        # Running exclusion set: caller's codes plus everything drawn so far.
        excluded: set[str] = set(exclude_set) if exclude_set is not None else set()
        all_codes: list[str] = []
        total_chunks = math.ceil(total_count / self.batch_size)

        self.logger.info(
            f"Starting batch generation: total={total_count} batch_size={self.batch_size} "
            f"chunks={total_chunks} excluded={len(excluded)}"
        )

        for chunk_index in range(total_chunks):
            remaining = total_count - len(all_codes)
            chunk_size = min(self.batch_size, remaining)
            if chunk_size <= 0:
                break

            chunk_codes = self.generate_many(chunk_size, excluded)
            excluded.update(chunk_codes)
            all_codes.extend(chunk_codes)

            self.logger.debug(
                f"Completed chunk {chunk_index + 1}/{total_chunks}: "
                f"chunk_generated={len(chunk_codes)} total_generated={len(all_codes)}"
            )

            if on_progress is not None:
                on_progress(
                    GenerationProgress(
                        chunk_index=chunk_index + 1,
                        total_chunks=total_chunks,
                        generated_so_far=len(all_codes),
                        total=total_count,
                        percentage=round(len(all_codes) / total_count * 100),
                    )
                )

            await asyncio.sleep(0)

        self.logger.info(f"Batch generation completed: requested={total_count} generated={len(all_codes)}")
        return all_codes

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def is_valid_code(self, code: object) -> bool:
        if not isinstance(code, str) or len(code) != self.length:
            return False
        return all(char in self._charset_members for char in code)

    def filter_valid_codes(self, codes: Iterable[object]) -> list[str]:
        return [code for code in codes if self.is_valid_code(code)]

    # ========================================================================
    # CODE SPACE STATISTICS
    # ========================================================================

    @property
    def max_possible_codes(self) -> int:
        return len(self.charset) ** self.length

    def estimate_collision_probability(self, issued_count: int) -> float:
        """Birthday-paradox estimate ``1 - e^(-n(n-1) / 2M)``, saturating at 1."""
        max_codes = self.max_possible_codes
        if issued_count >= max_codes:
            return 1.0
        if issued_count < 2:
            return 0.0
        probability = 1 - math.exp(-issued_count * (issued_count - 1) / (2 * max_codes))
        return min(max(probability, 0.0), 1.0)

    def get_code_space_statistics(self, current_pool_size: int = 0) -> CodeSpaceStatistics:
        max_codes = self.max_possible_codes
        return CodeSpaceStatistics(
            max_possible_codes=max_codes,
            current_pool_size=current_pool_size,
            utilization_percentage=current_pool_size / max_codes * 100,
            remaining_codes=max(max_codes - current_pool_size, 0),
            collision_probability=self.estimate_collision_probability(current_pool_size),
            recommended_pool_size=min(math.isqrt(max_codes), self.pool_size),
        )

    def get_configuration(self) -> GeneratorConfiguration:
        return GeneratorConfiguration(
            charset=self.charset,
            charset_length=len(self.charset),
            code_length=self.length,
            pool_size=self.pool_size,
            batch_size=self.batch_size,
            max_possible_codes=self.max_possible_codes,
            characters_used={
                "lowercase": any(c in string.ascii_lowercase for c in self.charset),
                "uppercase": any(c in string.ascii_uppercase for c in self.charset),
                "numbers": any(c in string.digits for c in self.charset),
            },
        )
