import logging
from typing import List, Optional
import asyncpg
from ..models.db_models import User, Course

logger = logging.getLogger(__name__)

class AsyncPostgresClient:
    """
    Read-only PostgreSQL client for the course and user tables owned by the
    course-management and user-management services.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_course_by_id(self, course_id: str) -> Optional[Course]:
        """Returns a course together with the ids of its enrolled students."""
        query = """
            SELECT c.course_id, c.course_code, c.course_name, c.lecturer_id,
                   COALESCE(
                       array_agg(cs.student_id) FILTER (WHERE cs.student_id IS NOT NULL),
                       '{}'
                   ) AS enrolled_student_ids
            FROM Courses c
            LEFT JOIN CourseStudents cs ON cs.course_id = c.course_id
            WHERE c.course_id = $1
            GROUP BY c.course_id;
        """
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, course_id)
            return Course(**record) if record else None

    async def get_users(self, user_ids: List[str]) -> List[User]:
        """Returns the users matching the given ids."""
        if not user_ids:
            return []
        query = "SELECT user_id, first_name, last_name, id_number, role FROM Users WHERE user_id = ANY($1);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, user_ids)
            return [User(**record) for record in records]
