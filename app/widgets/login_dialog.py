"""
app/widgets/login_dialog.py -- Sign-in / registration dialog for cloud mode.

Shown at startup when no session token is stored, and again whenever the
server answers 401 (the client has already dropped the stale token by
then).  The request runs on a ``CallWorker`` so the dialog stays
responsive; on success the client stores the new token and the dialog
accepts.
"""

from __future__ import annotations

import logging
from functools import partial

from PySide6.QtWidgets import (
    QDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from app.services.worker import CallWorker
from engine.cloud_storage import AuthUser, CloudStorageClient
from engine.errors import AuthenticationError, AuthorioError

logger = logging.getLogger(__name__)


class LoginDialog(QDialog):
    """Modal dialog that signs in (or registers) through *client*.

    Parameters
    ----------
    client : CloudStorageClient
        The client whose token store receives the session token.
    message : str
        Optional line shown above the form, e.g. why sign-in is needed.
    parent : QWidget | None
        Parent widget.
    """

    def __init__(
        self,
        client: CloudStorageClient,
        message: str = "",
        parent: QWidget | None = None,
    ):
        super().__init__(parent)
        self.setWindowTitle("Sign in to Authorio")
        self.setModal(True)
        self.setMinimumWidth(340)

        self._client = client
        self._registering = False
        self._worker: CallWorker | None = None
        self.user: AuthUser | None = None

        layout = QVBoxLayout(self)

        self._message = QLabel(message)
        self._message.setWordWrap(True)
        self._message.setVisible(bool(message))
        layout.addWidget(self._message)

        form = QFormLayout()
        self.name_edit = QLineEdit()
        self.email_edit = QLineEdit()
        self.password_edit = QLineEdit()
        self.password_edit.setEchoMode(QLineEdit.EchoMode.Password)
        self.password_edit.returnPressed.connect(self.submit)
        form.addRow("Name", self.name_edit)
        form.addRow("Email", self.email_edit)
        form.addRow("Password", self.password_edit)
        self._form = form
        layout.addLayout(form)

        self.error_label = QLabel("")
        self.error_label.setWordWrap(True)
        self.error_label.setStyleSheet("color: #C62828;")
        self.error_label.setVisible(False)
        layout.addWidget(self.error_label)

        btn_row = QHBoxLayout()
        self._mode_btn = QPushButton()
        self._mode_btn.setFlat(True)
        self._mode_btn.clicked.connect(lambda: self.set_registering(not self._registering))
        btn_row.addWidget(self._mode_btn)
        btn_row.addStretch()
        cancel_btn = QPushButton("Cancel")
        cancel_btn.clicked.connect(self.reject)
        btn_row.addWidget(cancel_btn)
        self.submit_btn = QPushButton()
        self.submit_btn.setDefault(True)
        self.submit_btn.clicked.connect(self.submit)
        btn_row.addWidget(self.submit_btn)
        layout.addLayout(btn_row)

        self.set_registering(False)

    @property
    def is_registering(self) -> bool:
        return self._registering

    @property
    def is_busy(self) -> bool:
        return self._worker is not None

    def set_registering(self, registering: bool) -> None:
        """Switch between the sign-in and create-account forms."""
        self._registering = registering
        self._form.setRowVisible(self.name_edit, registering)
        self.submit_btn.setText("Create Account" if registering else "Sign In")
        self._mode_btn.setText("Have an account? Sign in" if registering else "Create an account")
        self._show_error("")

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit(self) -> None:
        if self._worker is not None:
            return
        email = self.email_edit.text().strip()
        password = self.password_edit.text()
        name = self.name_edit.text().strip()
        if not email or not password or (self._registering and not name):
            self._show_error("Please fill in every field.")
            return

        if self._registering:
            call = partial(self._client.register, email, password, name)
        else:
            call = partial(self._client.login, email, password)

        self._set_busy(True)
        self._worker = CallWorker(call, self)
        self._worker.succeeded.connect(self._on_signed_in)
        self._worker.failed.connect(self._on_failed)
        self._worker.finished.connect(self._on_worker_finished)
        self._worker.start()

    def _on_worker_finished(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.deleteLater()

    def _on_signed_in(self, user: AuthUser) -> None:
        self.user = user
        logger.debug("Login dialog accepted for %s", user.email)
        self.accept()

    def _on_failed(self, exc: AuthorioError) -> None:
        self._set_busy(False)
        if isinstance(exc, AuthenticationError):
            self._show_error("Incorrect email or password.")
        else:
            self._show_error(str(exc))

    def _set_busy(self, busy: bool) -> None:
        for widget in (self.name_edit, self.email_edit, self.password_edit, self.submit_btn, self._mode_btn):
            widget.setEnabled(not busy)
        if busy:
            self._show_error("")

    def _show_error(self, message: str) -> None:
        self.error_label.setText(message)
        self.error_label.setVisible(bool(message))


def sign_in(client: CloudStorageClient, message: str = "", parent: QWidget | None = None) -> bool:
    """Run the dialog modally unless *client* already holds a token."""
    if client.is_authenticated():
        return True
    dialog = LoginDialog(client, message, parent)
    dialog.exec()
    return dialog.user is not None
