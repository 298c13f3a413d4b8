# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles
# (classes.school_id → schools.id, teacher_classes.teacher_id → users.id, ...).

from app.models.school import School  # noqa: F401  — doit précéder les autres
from app.models.user import User  # noqa: F401
from app.models.school_class import SchoolClass, TeacherClass  # noqa: F401
from app.models.student import Student  # noqa: F401
from app.models.attendance import AttendanceEvent, DailyAttendance  # noqa: F401
