from django.db import models
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.utils.translation import gettext_lazy as _
from .managers import CustomUserManager


class CustomUser(AbstractBaseUser, PermissionsMixin):
    """
    Account owning projects, tasks, conversations and AI artifacts.
    Authenticates with email; every AI budget is keyed on the user id.
    """
    email = models.EmailField(_('email address'), unique=True)

    username = models.CharField(
        _('username'),
        max_length=150,
        unique=True,
        null=True,
        blank=True,
    )

    first_name = models.CharField(_('first name'), max_length=150, blank=True)
    last_name = models.CharField(_('last name'), max_length=150, blank=True)

    is_staff = models.BooleanField(_('staff status'), default=False)
    is_active = models.BooleanField(
        _('active'),
        default=True,
        help_text=_('Unselect this instead of deleting accounts.'),
    )
    date_joined = models.DateTimeField(_('date joined'), auto_now_add=True)

    # Used to decide what "today" means for the Today/Upcoming task views
    timezone = models.CharField(
        _('timezone'),
        max_length=60,
        default='UTC',
    )

    objects = CustomUserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username']

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')

    def get_full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    def get_short_name(self):
        return self.first_name

    def __str__(self):
        return self.email
