from django.core.management.base import BaseCommand

from marketplace.models import Category

DEFAULT_CATEGORIES = ("fashion", "furniture", "food", "books", "electronics")


class Command(BaseCommand):
    help = "Creates the item categories, skipping the ones that already exist"

    def add_arguments(self, parser):
        parser.add_argument(
            "names",
            nargs="*",
            help="Category names to create (defaults to the built-in list)",
        )

    def handle(self, *args, **options):
        names = options["names"] or DEFAULT_CATEGORIES
        created = 0
        for name in names:
            _, was_created = Category.objects.get_or_create(name=name)
            if was_created:
                created += 1
                self.stdout.write(f"Created category '{name}'")
        self.stdout.write(self.style.SUCCESS(f"{created} categories created."))
