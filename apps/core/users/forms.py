from django import forms
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError

User = get_user_model()


class RegistrationForm(forms.Form):
    name = forms.CharField(min_length=2, max_length=150)
    email = forms.EmailField()
    password = forms.CharField(min_length=8, strip=False)
    room_number = forms.CharField(max_length=20, required=False)

    def clean_name(self):
        name = self.cleaned_data['name'].strip()
        if len(name) < 2:
            raise ValidationError('Name must be at least 2 characters.')
        return name

    def clean_email(self):
        email = self.cleaned_data['email'].strip().lower()
        if User.objects.filter(email__iexact=email).exists() or User.objects.filter(username__iexact=email).exists():
            raise ValidationError('User with this email already exists.', code='duplicate')
        return email

    def save(self):
        first_name, _, last_name = self.cleaned_data['name'].partition(' ')
        return User.objects.create_user(
            username=self.cleaned_data['email'],
            email=self.cleaned_data['email'],
            password=self.cleaned_data['password'],
            first_name=first_name[:150],
            last_name=last_name.strip()[:150],
            room_number=self.cleaned_data.get('room_number') or '',
            role=User.ROLE_BOARDER,
        )


class LoginForm(forms.Form):
    email = forms.CharField(max_length=254)
    password = forms.CharField(strip=False)


class RoleAssignForm(forms.Form):
    role = forms.ChoiceField(choices=User.ROLE_CHOICES)
