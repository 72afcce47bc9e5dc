# utils/enhanced_email.py
"""
Queued email delivery for enrollment and eligibility messages.

Messages are rendered inside the request (or CLI) context, put on a priority
queue and delivered by a single daemon worker thread that re-enters the
application context for every send. A failed send is retried with
exponential backoff and never reaches the caller.
"""

import itertools
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from flask import current_app, render_template
from datetime import datetime
import threading
import queue
import time

DEFAULT_STATUS_HISTORY = 500


class Priority:
    HIGH = 0
    NORMAL = 1
    LOW = 2


class EmailStatus:
    QUEUED = 'queued'
    SENDING = 'sending'
    SENT = 'sent'
    FAILED = 'failed'
    SUPPRESSED = 'suppressed'

    def __init__(self, recipient, subject, task_id, group_id=None):
        self.recipient = recipient
        self.subject = subject
        self.task_id = task_id
        self.group_id = group_id
        self.status = self.QUEUED
        self.attempts = 0
        self.max_attempts = 3
        self.last_attempt = None
        self.error = None
        self.timestamp = datetime.now()
        self.sent_time = None
        self.priority = Priority.NORMAL

    @property
    def finished(self):
        if self.status == self.FAILED:
            return self.attempts >= self.max_attempts
        return self.status in (self.SENT, self.SUPPRESSED)


class PriorityEmailQueue:
    def __init__(self):
        self.queue = queue.PriorityQueue()
        self.counter = itertools.count()

    def put(self, task, priority=Priority.NORMAL):
        """Add a task to the queue with a priority level"""
        task['priority'] = priority
        self.queue.put((priority, next(self.counter), task))
        return task.get('task_id')

    def get(self, timeout=None):
        """Get the next task, waiting up to ``timeout`` seconds"""
        try:
            _, _, task = self.queue.get(timeout=timeout)
            return task
        except queue.Empty:
            return None

    def size(self):
        return self.queue.qsize()


class EnhancedEmailService:
    def __init__(self, app=None):
        self.app = None
        self._app_ref = None  # app reference for the worker thread
        self.worker_thread = None
        self.running = False
        self.logger = logging.getLogger('email_service')
        self._shutdown_event = threading.Event()
        self.email_queue = PriorityEmailQueue()
        self.statuses = {}
        self.max_statuses = DEFAULT_STATUS_HISTORY
        self._status_lock = threading.Lock()

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self._app_ref = app
        self.max_statuses = app.config.get('EMAIL_STATUS_HISTORY', DEFAULT_STATUS_HISTORY)

        if app.config.get('MAIL_SUPPRESS_SEND'):
            self.logger.info("MAIL_SUPPRESS_SEND is set; emails will be rendered and logged only")
            return

        with app.app_context():
            self._validate_email_config()

        if not self.running:
            self.start_worker()

        import atexit
        atexit.register(self.stop_worker)

    def _validate_email_config(self):
        required_config = {
            'MAIL_SERVER': 'SMTP server address',
            'MAIL_PORT': 'SMTP server port',
            'MAIL_USERNAME': 'SMTP username',
            'MAIL_PASSWORD': 'SMTP password',
            'MAIL_DEFAULT_SENDER': 'Default sender email'
        }

        missing_config = [
            f"{key} ({description})"
            for key, description in required_config.items()
            if not self.app.config.get(key)
        ]
        if missing_config:
            error_msg = f"Missing email configuration: {', '.join(missing_config)}"
            self.logger.error(error_msg)
            raise ValueError(error_msg)

        use_ssl = self.app.config.get('MAIL_USE_SSL', False)
        use_tls = self.app.config.get('MAIL_USE_TLS', False)
        if use_ssl and use_tls:
            self.logger.warning("Both MAIL_USE_SSL and MAIL_USE_TLS are enabled. SSL will take precedence.")

        self.logger.info(
            f"Email config validated: {self.app.config.get('MAIL_SERVER')}:{self.app.config.get('MAIL_PORT')} "
            f"(SSL: {use_ssl}, TLS: {use_tls})"
        )

    def start_worker(self):
        if self.worker_thread is None or not self.worker_thread.is_alive():
            self.running = True
            self._shutdown_event.clear()
            self.worker_thread = threading.Thread(
                target=self._process_queue,
                daemon=True,
                name="EmailWorker"
            )
            self.worker_thread.start()
            self.logger.info("Email worker thread started")

    def stop_worker(self):
        self.logger.info("Shutting down email service")
        self.running = False
        self._shutdown_event.set()

        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=5)
            if self.worker_thread.is_alive():
                self.logger.warning("Email worker thread did not shut down gracefully")

    def _remember(self, status):
        """Track a task, forgetting the oldest finished ones beyond ``max_statuses``."""
        with self._status_lock:
            self.statuses[status.task_id] = status
            excess = len(self.statuses) - self.max_statuses
            if excess <= 0:
                return

            finished = [task_id for task_id, s in self.statuses.items() if s.finished]
            for task_id in finished[:excess]:
                del self.statuses[task_id]

    def _set_status(self, task_id, **fields):
        with self._status_lock:
            status = self.statuses.get(task_id)
            if status:
                for key, value in fields.items():
                    setattr(status, key, value)
            return status

    def _process_queue(self):
        while self.running and not self._shutdown_event.is_set():
            task = self.email_queue.get(timeout=1.0)
            if not task:
                continue

            task_id = task.get('task_id')
            status = self._set_status(task_id, status=EmailStatus.SENDING, last_attempt=datetime.now())
            if status:
                status.attempts += 1

            try:
                with self._app_ref.app_context():
                    self._send_email(task)
                self._set_status(task_id, status=EmailStatus.SENT, sent_time=datetime.now())
                self.logger.info(f"Email sent successfully to {task['recipient']}")

            except Exception as e:
                self.logger.error(f"Email sending failed: {str(e)}", exc_info=True)
                status = self._set_status(task_id, status=EmailStatus.FAILED, error=str(e))

                if status and status.attempts < status.max_attempts:
                    delay = min(2 ** status.attempts, 60)
                    self.logger.info(f"Retrying task {task_id} in {delay} seconds")
                    self._shutdown_event.wait(delay)
                    self.email_queue.put(task, priority=task.get('priority', Priority.NORMAL))

        self.logger.info("Email worker thread exited")

    def _send_email(self, task):
        msg = MIMEMultipart('alternative')
        msg['Subject'] = task['subject']
        msg['From'] = current_app.config['MAIL_DEFAULT_SENDER']
        msg['To'] = task['recipient']

        if task.get('text_body'):
            msg.attach(MIMEText(task['text_body'], 'plain'))
        if task.get('html_body'):
            msg.attach(MIMEText(task['html_body'], 'html'))

        server = self._create_smtp_connection()
        try:
            server.login(current_app.config['MAIL_USERNAME'], current_app.config['MAIL_PASSWORD'])
            server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            self.logger.error(f"SMTP authentication failed: {str(e)}")
            raise
        finally:
            server.quit()

    def _create_smtp_connection(self):
        mail_server = current_app.config['MAIL_SERVER']
        mail_port = current_app.config['MAIL_PORT']

        if current_app.config.get('MAIL_USE_SSL', False):
            self.logger.debug(f"Creating SMTP_SSL connection to {mail_server}:{mail_port}")
            return smtplib.SMTP_SSL(mail_server, mail_port, timeout=30)

        self.logger.debug(f"Creating SMTP connection to {mail_server}:{mail_port}")
        server = smtplib.SMTP(mail_server, mail_port, timeout=30)
        if current_app.config.get('MAIL_USE_TLS', False):
            server.starttls()
        return server

    def queue_email(self, recipient, subject, template, context, group_id=None, priority=Priority.NORMAL):
        """
        Render ``emails/<template>.html`` and ``.txt`` and queue the message.

        Returns:
            str: task id of the queued (or suppressed) message
        """
        context = dict(context)
        context.setdefault('site_name', current_app.config.get('SITE_NAME'))
        context.setdefault('support_email', current_app.config.get('CONTACT_EMAIL'))
        context.setdefault('timestamp', datetime.now())

        html_body = render_template(f'emails/{template}.html', **context)
        text_body = render_template(f'emails/{template}.txt', **context)

        task_id = f"{group_id or template}_{int(datetime.now().timestamp() * 1000)}_{recipient}"
        status = EmailStatus(recipient=recipient, subject=subject, task_id=task_id, group_id=group_id)
        status.priority = priority

        if current_app.config.get('MAIL_SUPPRESS_SEND'):
            status.status = EmailStatus.SUPPRESSED
            self._remember(status)
            self.logger.info(f"Email to {recipient} suppressed: {subject}")
            return task_id

        self._remember(status)

        self.email_queue.put({
            'recipient': recipient,
            'subject': subject,
            'html_body': html_body,
            'text_body': text_body,
            'task_id': task_id,
            'group_id': group_id
        }, priority)

        self.logger.info(f"Email queued for {recipient}: {subject}")
        return task_id

    def send_enrollment_confirmation(self, enrollment_id):
        """
        Queue the enrollment confirmation email.

        Args:
            enrollment_id: ID of the committed enrollment

        Returns:
            str: task id, or None when the participant has no email address
        """
        from enrollment_engine.extensions import db
        from enrollment_engine.models import Enrollment
        from enrollment_engine.services.calendar_service import CalendarService

        enrollment = db.session.get(Enrollment, enrollment_id)
        if not enrollment:
            raise ValueError("Enrollment not found")

        participant = enrollment.participant
        if not participant.email:
            self.logger.info(f"Participant {participant.id} has no email; confirmation skipped")
            return None

        course_class = enrollment.course_class
        context = {
            'participant': participant,
            'course_class': course_class,
            'event': course_class.event,
            'sessions': CalendarService.sessions_of(course_class.id),
        }

        return self.queue_email(
            recipient=participant.email,
            subject=f"Enrollment confirmed: {course_class.event.title} - {course_class.name}",
            template='enrollment_confirmation',
            context=context,
            group_id='enrollment_confirmation',
            priority=Priority.HIGH
        )

    def send_certificate_available(self, participant, course_class):
        """Queue the certificate-available email for an evaluated class."""
        if not participant.email:
            return None

        return self.queue_email(
            recipient=participant.email,
            subject=f"Certificate available: {course_class.event.title}",
            template='certificate_available',
            context={'participant': participant, 'course_class': course_class, 'event': course_class.event},
            group_id='certificate_available',
            priority=Priority.LOW
        )

    def get_queue_stats(self):
        stats = {
            'queued': 0,
            'sending': 0,
            'sent': 0,
            'failed': 0,
            'suppressed': 0,
            'total': len(self.statuses)
        }

        with self._status_lock:
            for status in self.statuses.values():
                if status.status in stats:
                    stats[status.status] += 1

        stats['queue_size'] = self.email_queue.size()
        stats['worker_alive'] = bool(self.worker_thread and self.worker_thread.is_alive())
        return stats
