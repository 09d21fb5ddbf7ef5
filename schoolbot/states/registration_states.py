from aiogram.fsm.state import State, StatesGroup


class BasicInfoStates(StatesGroup):
    """Phase 1: base account fields, one prompt per field."""
    enter_name            = State()
    enter_email           = State()
    enter_address         = State()
    enter_birth_day       = State()
    enter_contact         = State()
    choose_gender         = State()   # Inline: Male / Female
    choose_role           = State()   # Inline: Teacher / Student / Parent
    enter_username        = State()
    enter_password        = State()
    confirm_password      = State()
    review                = State()   # Summary → submit or edit


class TeacherDetailStates(StatesGroup):
    """Phase 2 (Teacher): stage grade/class/subject/medium assignments."""
    assignment_list = State()   # Panel with staged entries
    choose_grade    = State()
    choose_class    = State()
    choose_subject  = State()
    choose_medium   = State()
    enter_staff_no  = State()


class ParentDetailStates(StatesGroup):
    """Phase 2 (Parent): stage links to children."""
    link_list            = State()
    enter_admission_no   = State()
    enter_profession     = State()
    enter_relation       = State()
    enter_parent_contact = State()


class StudentDetailStates(StatesGroup):
    """Phase 2 (Student): single record."""
    choose_grade             = State()
    choose_class             = State()
    choose_medium            = State()
    enter_admission_no       = State()
    enter_parent_contact     = State()
    enter_parent_profession  = State()
