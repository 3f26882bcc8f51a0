"""
Management command to seed the database with sample data.

Generates:
- Restaurants with categorised menus (some offline, some items unavailable,
  the last one awaiting verification)
- Customers
- A device token per restaurant

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from decimal import Decimal
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from restaurants.models import Category, Customer, DeviceToken, MenuItem, Restaurant


MENU_TEMPLATES = {
    'Starters': [
        ('Paneer Tikka', '220'), ('Veg Spring Roll', '150'), ('Hara Bhara Kebab', '180'),
        ('Chicken 65', '240'), ('Masala Papad', '60'),
    ],
    'Main Course': [
        ('Dal Makhani', '210'), ('Paneer Butter Masala', '260'), ('Veg Biryani', '230'),
        ('Chicken Biryani', '290'), ('Chole Bhature', '170'), ('Butter Chicken', '320'),
    ],
    'Breads': [
        ('Butter Naan', '45'), ('Tandoori Roti', '30'), ('Garlic Naan', '60'), ('Lachha Paratha', '55'),
    ],
    'Desserts': [
        ('Gulab Jamun', '80'), ('Rasmalai', '110'), ('Kulfi', '90'),
    ],
    'Beverages': [
        ('Masala Chai', '40'), ('Sweet Lassi', '70'), ('Fresh Lime Soda', '60'), ('Cold Coffee', '120'),
    ],
}

NON_VEG_KEYWORDS = ('chicken',)


class Command(BaseCommand):
    help = 'Seed the database with sample restaurants, menus, customers and device tokens'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--restaurants',
            type=int,
            default=5,
            help='Number of restaurants to create (default: 5)',
        )
        parser.add_argument(
            '--customers',
            type=int,
            default=20,
            help='Number of customers to create (default: 20)',
        )
        parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible data',
        )

    def handle(self, *args, **options):
        if options['seed'] is not None:
            random.seed(options['seed'])

        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            restaurants = self._create_restaurants(options['restaurants'])
            self._create_menus(restaurants)
            self._create_device_tokens(restaurants)
            self._create_customers(options['customers'])

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear all existing data. Orders go first, they protect menu rows."""
        from orders.models import OrderItem, Order

        OrderItem.objects.all().delete()
        Order.objects.all().delete()
        DeviceToken.objects.all().delete()
        MenuItem.objects.all().delete()
        Category.objects.all().delete()
        Customer.objects.all().delete()
        Restaurant.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_restaurants(self, count):
        names = [
            'Spice Route', 'Tandoor Tales', 'Masala Junction', 'Curry Leaf',
            'The Dosa Corner', 'Biryani House', 'Chaat Street', 'Punjab Grill',
        ]
        areas = ['Indiranagar', 'Koramangala', 'HSR Layout', 'Jayanagar', 'Whitefield', 'MG Road']

        restaurants = []
        for i in range(count):
            uid = f"rest-{i + 1:03d}"
            name = names[i % len(names)]
            restaurant, created = Restaurant.objects.get_or_create(
                uid=uid,
                defaults={
                    'name': name if i < len(names) else f"{name} {i + 1}",
                    'location': f"{random.choice(areas)}, Bengaluru",
                    'email': f"{uid}@example.com",
                    'is_pure_veg': random.random() > 0.5,
                    # Roughly one in five starts offline so held orders can be exercised
                    'is_online': random.random() > 0.2,
                    'documents_submitted': True,
                    'submission_date': timezone.now(),
                    # The last one waits in the admin review queue
                    'verification_status': (
                        Restaurant.VerificationStatus.PENDING if i == count - 1
                        else Restaurant.VerificationStatus.VERIFIED
                    ),
                },
            )
            restaurants.append(restaurant)
            if created:
                self.stdout.write(f'  Created restaurant: {restaurant.name} ({uid})')

        self.stdout.write(self.style.SUCCESS(f'Created {len(restaurants)} restaurants'))
        return restaurants

    def _create_menus(self, restaurants):
        menu_items = []
        for restaurant in restaurants:
            for category_name, dishes in MENU_TEMPLATES.items():
                category, _ = Category.objects.get_or_create(restaurant=restaurant, name=category_name)
                for dish, price in dishes:
                    is_veg = not any(word in dish.lower() for word in NON_VEG_KEYWORDS)
                    if restaurant.is_pure_veg and not is_veg:
                        continue
                    if MenuItem.objects.filter(restaurant=restaurant, name=dish).exists():
                        continue
                    menu_items.append(MenuItem(
                        restaurant=restaurant,
                        category=category,
                        name=dish,
                        description=f"{dish} from the {category_name.lower()} section.",
                        price=Decimal(price),
                        is_veg=is_veg,
                        is_available=random.random() > 0.1,  # 90% available
                    ))

        MenuItem.objects.bulk_create(menu_items)
        self.stdout.write(self.style.SUCCESS(f'Created {len(menu_items)} menu items'))

    def _create_device_tokens(self, restaurants):
        created = 0
        for restaurant in restaurants:
            _, was_created = DeviceToken.objects.get_or_create(
                token=f"seed-token-{restaurant.uid}",
                defaults={'restaurant': restaurant, 'platform': 'android'},
            )
            created += int(was_created)
        self.stdout.write(self.style.SUCCESS(f'Created {created} device tokens'))

    def _create_customers(self, count):
        first_names = ['Asha', 'Rahul', 'Priya', 'Vikram', 'Neha', 'Arjun', 'Kavya', 'Rohan', 'Meera', 'Karthik']

        customers = []
        for i in range(count):
            uid = f"cust-{i + 1:03d}"
            customer, _ = Customer.objects.get_or_create(
                uid=uid,
                defaults={
                    'name': first_names[i % len(first_names)],
                    'phone': f"+9198{random.randint(10000000, 99999999)}",
                    'email': f"{uid}@example.com",
                },
            )
            customers.append(customer)

        self.stdout.write(self.style.SUCCESS(f'Created {len(customers)} customers'))
        return customers
