class StudentNotFoundError(LookupError):
    def __init__(self, student_id: str):
        super().__init__(f"Student {student_id!r} not found.")
        self.student_id = student_id


class InvalidReportRequest(ValueError):
    pass
