# services/report_service.py
"""
Per-class attendance matrix (session dates x enrollees), its spreadsheet export,
and a participant's own attendance overview.
"""

import logging
from io import BytesIO
from datetime import datetime

import pandas as pd

from enrollment_engine.extensions import db
from enrollment_engine.models import (
    User, CourseClass, Enrollment, Attendance, AttendanceMethod, EvaluationSubmission
)
from enrollment_engine.services.calendar_service import CalendarService
from enrollment_engine.services.eligibility_service import EligibilityService
from enrollment_engine.services.errors import (
    EnrollmentError, ServiceError, NotFoundError, error_result, internal_error_result
)
from enrollment_engine.utils.intervals import combine, format_hhmm

logger = logging.getLogger('report_service')


class SessionStatus:
    PRESENT = 'present'
    PENDING = 'pending'
    ABSENT = 'absent'
    UPCOMING = 'upcoming'


class ReportService:

    @staticmethod
    def _status(row, session_ended):
        if row is not None and row.present:
            return SessionStatus.PRESENT
        if row is not None and row.method == AttendanceMethod.PENDING:
            return SessionStatus.PENDING
        return SessionStatus.ABSENT if session_ended else SessionStatus.UPCOMING

    @staticmethod
    def attendance_matrix(class_id, now=None):
        """
        Attendance of every enrollee on every session date.

        A date without a present mark counts as absent once its session has ended
        and as upcoming before that.
        """
        now = now or datetime.now()
        try:
            course_class = db.session.get(CourseClass, class_id)
            if not course_class:
                raise NotFoundError(EnrollmentError.CLASS_NOT_FOUND, 'Class not found')

            slots = CalendarService.sessions_of(course_class)
            ended = {slot.date: combine(slot.date, slot.end_time) < now for slot in slots}

            rows = (
                db.session.query(User)
                .join(Enrollment, Enrollment.participant_id == User.id)
                .filter(Enrollment.class_id == class_id)
                .order_by(User.name)
                .all()
            )
            marks = {
                (a.participant_id, a.session_date): a
                for a in db.session.query(Attendance).filter(Attendance.class_id == class_id).all()
            }

            participants = []
            for participant in rows:
                sessions = []
                for slot in slots:
                    mark = marks.get((participant.id, slot.date))
                    sessions.append({
                        'date': slot.date.isoformat(),
                        'status': ReportService._status(mark, ended[slot.date]),
                        'confirmed_at': mark.confirmed_at.isoformat() if mark and mark.confirmed_at else None
                    })

                present_dates = [s['date'] for s in sessions if s['status'] == SessionStatus.PRESENT]
                participants.append({
                    'participant_id': participant.id,
                    'name': participant.name,
                    'registration': participant.registration,
                    'sessions': sessions,
                    'present_dates': present_dates,
                    'absent_dates': [s['date'] for s in sessions if s['status'] == SessionStatus.ABSENT],
                    'frequency': round(len(present_dates) / len(slots), 4) if slots else 0.0
                })

            return {
                'success': True,
                'class_id': class_id,
                'class_name': course_class.name,
                'event_title': course_class.event.title,
                'dates': [slot.date.isoformat() for slot in slots],
                'participants': participants,
                'generated_at': now.isoformat()
            }

        except ServiceError as e:
            return error_result(e)
        except Exception as e:
            return internal_error_result(logger, 'Failed to build attendance report', e)

    @staticmethod
    def participant_attendance(participant_id, now=None):
        """
        A participant's own attendance in every class they are enrolled in.

        Classes with no attendance yet are listed too. Each entry carries the
        calendar dates with their status and the eligibility state of the class,
        latest class first.
        """
        now = now or datetime.now()
        try:
            classes = (
                db.session.query(CourseClass)
                .join(Enrollment, Enrollment.class_id == CourseClass.id)
                .filter(Enrollment.participant_id == participant_id)
                .order_by(CourseClass.start_date.desc(), CourseClass.id.desc())
                .all()
            )
            marks = {
                (a.class_id, a.session_date): a
                for a in db.session.query(Attendance).filter(Attendance.participant_id == participant_id).all()
            }
            submitted = {
                class_id for (class_id,) in
                db.session.query(EvaluationSubmission.class_id).filter_by(participant_id=participant_id).all()
            }

            items = []
            for course_class in classes:
                sessions = []
                for slot in CalendarService.sessions_of(course_class):
                    mark = marks.get((course_class.id, slot.date))
                    ended = combine(slot.date, slot.end_time) < now
                    sessions.append({
                        'date': slot.date.isoformat(),
                        'start_time': format_hhmm(slot.start_time),
                        'end_time': format_hhmm(slot.end_time),
                        'status': ReportService._status(mark, ended)
                    })

                state = EligibilityService.evaluate(participant_id, course_class.id, now)
                items.append({
                    'class_id': course_class.id,
                    'class_name': course_class.name,
                    'event_id': course_class.event_id,
                    'event_title': course_class.event.title,
                    'sessions': sessions,
                    'present_dates': [s['date'] for s in sessions if s['status'] == SessionStatus.PRESENT],
                    'absent_dates': [s['date'] for s in sessions if s['status'] == SessionStatus.ABSENT],
                    'frequency': round(state.ratio, 4),
                    'evaluation_submitted': course_class.id in submitted,
                    **state.to_dict()
                })

            return {
                'success': True,
                'participant_id': participant_id,
                'classes': items,
                'count': len(items),
                'generated_at': now.isoformat()
            }

        except ServiceError as e:
            return error_result(e)
        except Exception as e:
            return internal_error_result(logger, 'Failed to load participant attendance', e)

    @staticmethod
    def export_attendance(class_id, file_format='xlsx', now=None):
        """
        Export the attendance matrix of a class.

        Returns:
            tuple: (file bytes, filename), or (None, None) if the class is unknown
        """
        report = ReportService.attendance_matrix(class_id, now=now)
        if not report['success']:
            return None, None

        data = []
        for participant in report['participants']:
            record = {
                'Name': participant['name'],
                'Registration': participant['registration'] or '',
            }
            for session in participant['sessions']:
                record[session['date']] = session['status']
            record['Frequency (%)'] = round(participant['frequency'] * 100, 1)
            data.append(record)

        columns = ['Name', 'Registration'] + report['dates'] + ['Frequency (%)']
        df = pd.DataFrame(data, columns=columns)

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        basename = f"attendance_class_{class_id}_{timestamp}"

        if file_format == 'csv':
            return df.to_csv(index=False).encode('utf-8'), f"{basename}.csv"

        output = BytesIO()
        with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
            df.to_excel(writer, sheet_name='Attendance', index=False)

            worksheet = writer.sheets['Attendance']
            for i, col in enumerate(df.columns):
                longest = df[col].astype(str).apply(len).max() if len(df) else 0
                worksheet.set_column(i, i, max(longest, len(col)) + 2)

        output.seek(0)
        logger.info(f"Exported attendance of class {class_id} ({len(df)} participants)")
        return output.getvalue(), f"{basename}.xlsx"
