from .auth import User
from .projects import Project, ProjectUser, Stage, Task
from .timesheets import TimesheetEntry, TimesheetLock

__all__ = [
    'User',
    'Project', 'ProjectUser', 'Stage', 'Task',
    'TimesheetEntry', 'TimesheetLock',
]
