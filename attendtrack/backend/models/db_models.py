# attendtrack/backend/models/db_models.py

from pydantic import BaseModel, Field
from typing import List

class User(BaseModel):
    """
    Represents a user in the system, mapping to the 'Users' table.
    """
    user_id: str = Field(..., description="Unique identifier for each user, acting as the Primary Key")
    first_name: str
    last_name: str
    id_number: str = Field(..., description="The school-issued ID number printed on the student card.")
    role: str = Field(..., description="Can be Admin, Lecturer or Student")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

class Course(BaseModel):
    """
    Represents a course, mapping to the 'Courses' table joined with its
    'CourseStudents' enrollment rows.
    """
    course_id: str = Field(..., description="Unique identifier for the course")
    course_code: str = Field(..., description="Short code, e.g. 'CS101'.")
    course_name: str
    lecturer_id: str = Field(..., description="FK linking to the lecturer assigned to the course")
    enrolled_student_ids: List[str] = Field(default_factory=list)

    def is_enrolled(self, student_id: str) -> bool:
        return student_id in self.enrolled_student_ids
