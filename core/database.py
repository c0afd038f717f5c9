"""
SQLite database schema with SQLAlchemy models.

Tables: jobs, videos (per-URL transcript cache), analyses (1:1 with a job),
claims and spot_checks (owned by an analysis, replaced wholesale on retry).
"""

from pathlib import Path
from contextlib import asynccontextmanager

from sqlalchemy import (
    Column, DateTime, Integer, String, Text, JSON, ForeignKey, Index, CheckConstraint
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.pool import StaticPool

from core.job_state import JobStatus
from core.models import utcnow

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///data/trustcheck.db"


# ========================================
# SQLAlchemy Models
# ========================================

class Job(Base):
    """One analysis job, keyed by a content-addressed identifier."""
    __tablename__ = 'jobs'

    id = Column(String(64), primary_key=True)
    url = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    analysis = relationship(
        "Analysis", back_populates="job", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('idx_jobs_status_updated', 'status', 'updated_at'),
        CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED')",
            name='chk_jobs_status'
        ),
    )


class Video(Base):
    """Per-URL cache of metadata and transcript, shared across jobs."""
    __tablename__ = 'videos'

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(500), unique=True, nullable=False)
    title = Column(String(500))
    channel = Column(String(255))
    transcript = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    analyses = relationship("Analysis", back_populates="video")


class Analysis(Base):
    """LLM analysis result. Updated in place when a job is retried."""
    __tablename__ = 'analyses'

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(64), ForeignKey('jobs.id', ondelete='CASCADE'), unique=True, nullable=False)
    video_id = Column(Integer, ForeignKey('videos.id'), nullable=False)
    one_liner = Column(Text, nullable=False)
    bullet_points = Column(JSON, nullable=False, default=list)
    outline = Column(JSON, nullable=False, default=list)
    trust_score = Column(Integer, nullable=False)
    trust_signals = Column(JSON, nullable=False, default=list)
    language = Column(String(50), default='English')
    language_code = Column(String(10), default='en')
    model = Column(String(100))
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    job = relationship("Job", back_populates="analysis")
    video = relationship("Video", back_populates="analyses")
    claims = relationship(
        "ClaimRow", back_populates="analysis", cascade="all, delete-orphan",
        order_by="ClaimRow.position"
    )

    __table_args__ = (
        CheckConstraint("trust_score >= 0 AND trust_score <= 100", name='chk_analyses_trust_score'),
    )


class ClaimRow(Base):
    __tablename__ = 'claims'

    id = Column(Integer, primary_key=True, autoincrement=True)
    analysis_id = Column(Integer, ForeignKey('analyses.id', ondelete='CASCADE'), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    text = Column(Text, nullable=False)
    confidence = Column(Integer, nullable=False)

    analysis = relationship("Analysis", back_populates="claims")
    spot_checks = relationship(
        "SpotCheckRow", back_populates="claim", cascade="all, delete-orphan",
        order_by="SpotCheckRow.position"
    )

    __table_args__ = (
        Index('idx_claims_analysis', 'analysis_id'),
        CheckConstraint("confidence >= 0 AND confidence <= 100", name='chk_claims_confidence'),
    )


class SpotCheckRow(Base):
    __tablename__ = 'spot_checks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    claim_id = Column(Integer, ForeignKey('claims.id', ondelete='CASCADE'), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    url = Column(String(1000), nullable=False)
    summary = Column(Text, nullable=False)
    verdict = Column(String(100), nullable=False)

    claim = relationship("ClaimRow", back_populates="spot_checks")

    __table_args__ = (
        Index('idx_spot_checks_claim', 'claim_id'),
    )


# ========================================
# Database Manager
# ========================================

class DatabaseManager:
    """Async database connection and session management."""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        self.database_url = database_url
        self.engine = None
        self.session_factory = None

    @property
    def is_memory(self) -> bool:
        return self.database_url.endswith(":memory:")

    async def initialize(self):
        """Initialize async database engine and session factory."""
        engine_kwargs = {
            "echo": False,  # Set to True for SQL debugging
            "future": True,
        }

        if self.database_url.startswith('sqlite'):
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": 30,
            }
            if self.is_memory:
                # One shared connection, otherwise every session sees an empty db
                engine_kwargs["poolclass"] = StaticPool
            else:
                db_path = Path(self.database_url.split(":///", 1)[1])
                db_path.parent.mkdir(exist_ok=True, parents=True)
        else:
            engine_kwargs.update({
                "pool_size": 5,
                "max_overflow": 5,
                "pool_timeout": 30,
                "pool_recycle": 1800,
                "pool_pre_ping": True,
            })

        self.engine = create_async_engine(self.database_url, **engine_kwargs)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def get_session(self):
        """Get an async database session that commits on success."""
        if not self.session_factory:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            else:
                await session.commit()

    async def close(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()


async def create_database(database_url: str = DEFAULT_DATABASE_URL) -> DatabaseManager:
    """Create database with all tables."""
    db_manager = DatabaseManager(database_url)
    await db_manager.initialize()
    return db_manager


async def reset_database(database_url: str = DEFAULT_DATABASE_URL) -> DatabaseManager:
    """Drop and recreate all tables."""
    db_manager = DatabaseManager(database_url)
    await db_manager.initialize()
    async with db_manager.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    return db_manager
