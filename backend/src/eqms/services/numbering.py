"""
Reference Number Service
Human-readable sequential numbers for departments, locations, workflow
entities and controlled documents.

    QUA-DEV001           deviation, per department
    QUA-DEV001-CAPA01    CAPA, per deviation
    QUA-DEV001-CAPA01-CC01  change control raised from a CAPA
    QUA-CC001            change control without a CAPA, per department
    QUA-LOC001           location, per department
    SOP-QUA-001          controlled document, per department and type
"""
from typing import Awaitable, Callable, Optional
import logging
import random
import re

from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.core.exceptions import NotFoundError
from eqms.db.mongo import Collections

logger = logging.getLogger(__name__)


def department_prefix(name: str) -> str:
    """First three letters of the department name, upper-cased"""
    return name.strip()[:3].upper()


def format_number(prefix: str, code: str, seq: int, width: int) -> str:
    """{prefix}-{code}{seq} with seq zero-padded to width digits"""
    return f"{prefix}-{code}{seq:0{width}d}"


async def assign_number(doc: dict, field: str, builder: Callable[[], Awaitable[str]]) -> str:
    """Set doc[field] from builder unless a number is already there"""
    if not doc.get(field):
        doc[field] = await builder()
    return doc[field]


class NumberingService:
    """Reference number generation"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ========================================================================
    # DEPARTMENT CODE
    # ========================================================================

    async def derive_department_code(self, name: str, exclude_id: Optional[str] = None) -> str:
        """
        Three-letter prefix, with a random 3-digit suffix when another
        department already owns or shares that prefix
        """
        prefix = department_prefix(name)
        query = {
            "$or": [
                {"code": prefix},
                {"name": {"$regex": f"^{re.escape(prefix)}", "$options": "i"}},
            ]
        }
        if exclude_id:
            query["id"] = {"$ne": exclude_id}

        clash = await self.db[Collections.DEPARTMENTS].find_one(query)
        if not clash:
            return prefix

        while True:
            candidate = f"{prefix}{random.randint(100, 999)}"
            taken = await self.db[Collections.DEPARTMENTS].find_one({"code": candidate})
            if not taken:
                return candidate

    async def department_code(self, department_id: str, session=None) -> str:
        """Stored code of a department; computed and persisted on first use"""
        department = await self.db[Collections.DEPARTMENTS].find_one(
            {"id": department_id}, session=session
        )
        if not department:
            raise NotFoundError("Department", department_id)

        if department.get("code"):
            return department["code"]

        code = await self.derive_department_code(department["name"], exclude_id=department_id)
        await self.db[Collections.DEPARTMENTS].update_one(
            {"id": department_id, "code": {"$in": [None, ""]}},
            {"$set": {"code": code}},
            session=session,
        )
        # Another request may have stored one first
        department = await self.db[Collections.DEPARTMENTS].find_one(
            {"id": department_id}, session=session
        )
        logger.info(f"Department {department_id} assigned code {department['code']}")
        return department["code"]

    # ========================================================================
    # SEQUENCES
    # ========================================================================

    async def next_sequence(self, collection: str, scope_filter: dict, session=None) -> int:
        """Count within scope + 1"""
        count = await self.db[collection].count_documents(scope_filter, session=session)
        return count + 1

    async def deviation_number(self, department_id: str, session=None) -> str:
        code = await self.department_code(department_id, session=session)
        seq = await self.next_sequence(
            Collections.DEVIATIONS, {"department_id": department_id}, session=session
        )
        return format_number(code, "DEV", seq, 3)

    async def capa_number(self, deviation_id: str, session=None) -> str:
        deviation = await self.db[Collections.DEVIATIONS].find_one(
            {"id": deviation_id}, session=session
        )
        if not deviation:
            raise NotFoundError("Deviation", deviation_id)
        seq = await self.next_sequence(
            Collections.CAPAS, {"deviation_id": deviation_id}, session=session
        )
        return format_number(deviation["deviation_number"], "CAPA", seq, 2)

    async def change_control_number(
        self, department_id: str, capa_id: Optional[str] = None, session=None
    ) -> str:
        if capa_id:
            capa = await self.db[Collections.CAPAS].find_one({"id": capa_id}, session=session)
            if not capa:
                raise NotFoundError("CAPA", capa_id)
            seq = await self.next_sequence(
                Collections.CHANGE_CONTROLS,
                {"change_control_number": {"$regex": f"^{re.escape(capa['capa_number'])}-CC\\d+$"}},
                session=session,
            )
            return format_number(capa["capa_number"], "CC", seq, 2)

        # Matched by number: linking one to a CAPA later must not shrink the count
        code = await self.department_code(department_id, session=session)
        seq = await self.next_sequence(
            Collections.CHANGE_CONTROLS,
            {"change_control_number": {"$regex": f"^{re.escape(code)}-CC\\d+$"}},
            session=session,
        )
        return format_number(code, "CC", seq, 3)

    async def location_code(self, department_id: str) -> str:
        code = await self.department_code(department_id)
        seq = await self.next_sequence(Collections.LOCATIONS, {"department_id": department_id})
        return format_number(code, "LOC", seq, 3)

    async def document_reference(self, prefix: str, collection: str, department_id: str) -> str:
        """{PREFIX}-{dept_code}-{NNN}"""
        code = await self.department_code(department_id)
        seq = await self.next_sequence(collection, {"department_id": department_id})
        return f"{prefix}-{code}-{seq:03d}"
