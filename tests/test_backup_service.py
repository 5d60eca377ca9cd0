from __future__ import annotations

import json
import unittest
from dataclasses import replace
from datetime import date

from app.models import AdminStatus, DeliveryStatus, DemandPriority, UserRole, UserStatus
from app.services import record_store
from app.services.backup_service import backup_filename, export_backup, import_backup
from app.services.import_service import ImportFormatError
from app.services.record_store import DeliveryRecord, DemandRecord, PendencyRecord
from tests.db_support import add_company, add_user, make_engine, make_session_factory


class BackupServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session_factory(self.engine)()
        self.company = add_company(self.db)
        self.other_company = add_company(self.db, 'Other Co')
        self.admin = add_user(self.db, self.company, 'admin', role=UserRole.ADMIN)
        self.viewer = add_user(self.db, self.company, 'viewer')

        record_store.create_delivery(
            self.db,
            record=DeliveryRecord(
                id='',
                invoice_number='NF-1',
                issue_date=date(2024, 1, 1),
                delivery_date=date(2024, 1, 5),
                status=DeliveryStatus.DELIVERED,
                receiver_name='Ana Souza',
                admin_status=AdminStatus.FULFILLED,
            ),
            company_id=self.company.id,
        )
        record_store.create_pendency(
            self.db,
            record=PendencyRecord(
                id='',
                provider_name='Acme',
                reference_number='REF-1',
                item_name='Cable',
                quantity=3,
                reason='Missing',
                created_on=date(2024, 1, 2),
            ),
            company_id=self.company.id,
        )
        record_store.create_demand(
            self.db,
            record=DemandRecord(
                id='',
                title='Store opening',
                request_date=date(2024, 1, 1),
                deadline=date(2024, 1, 10),
                items='[x] A\nB',
                priority=DemandPriority.URGENT,
            ),
            company_id=self.company.id,
        )
        record_store.create_technician(self.db, name='Ana Souza', company_id=self.company.id)
        record_store.create_delivery(
            self.db,
            record=DeliveryRecord(id='', invoice_number='OTHER-1', issue_date=date(2024, 1, 1)),
            company_id=self.other_company.id,
        )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_export_uses_camel_case_documents(self) -> None:
        document = export_backup(self.db, company_id=self.company.id)

        self.assertIn('exportedAt', document)
        self.assertEqual(len(document['deliveries']), 1)
        delivery = document['deliveries'][0]
        self.assertEqual(delivery['invoiceNumber'], 'NF-1')
        self.assertEqual(delivery['issueDate'], '2024-01-01')
        self.assertEqual(delivery['deliveryDate'], '2024-01-05')
        self.assertEqual(delivery['adminStatus'], 'Fulfilled')
        self.assertEqual(document['pendencies'][0]['date'], '2024-01-02')
        self.assertEqual(document['commercialDemands'][0]['priority'], 'Urgent')
        self.assertEqual(document['technicians'], ['Ana Souza'])
        self.assertEqual(sorted(user['username'] for user in document['users']), ['admin', 'viewer'])
        self.assertNotIn('passwordHash', document['users'][0])
        json.dumps(document)

    def test_round_trip_restores_same_records(self) -> None:
        document = export_backup(self.db, company_id=self.company.id)
        before = record_store.list_deliveries(self.db, company_id=self.company.id)

        summary = import_backup(self.db, company_id=self.company.id, content=json.dumps(document).encode('utf-8'))
        self.db.commit()

        self.assertEqual(
            summary.replaced,
            {'deliveries': 1, 'pendencies': 1, 'commercialDemands': 1, 'technicians': 1},
        )
        self.assertEqual(summary.users_updated, 2)
        after = record_store.list_deliveries(self.db, company_id=self.company.id)
        self.assertEqual([replace(d, id='') for d in after], [replace(d, id='') for d in before])

    def test_backup_restores_into_another_company(self) -> None:
        document = export_backup(self.db, company_id=self.company.id)

        summary = import_backup(self.db, company_id=self.other_company.id, content=document)
        self.db.commit()

        self.assertEqual(summary.replaced['deliveries'], 1)
        copied = record_store.list_deliveries(self.db, company_id=self.other_company.id)
        original = record_store.list_deliveries(self.db, company_id=self.company.id)
        self.assertEqual([d.invoice_number for d in copied], ['NF-1'])
        self.assertEqual([d.invoice_number for d in original], ['NF-1'])
        self.assertNotEqual(copied[0].id, original[0].id)
        self.assertEqual(len(record_store.list_demands(self.db, company_id=self.other_company.id)), 1)

    def test_duplicate_ids_in_file_are_restored_as_separate_records(self) -> None:
        content = {
            'deliveries': [
                {'id': 'same', 'invoiceNumber': 'NF-60', 'issueDate': '2024-02-01'},
                {'id': 'same', 'invoiceNumber': 'NF-61', 'issueDate': '2024-02-02'},
            ]
        }
        summary = import_backup(self.db, company_id=self.company.id, content=content)

        self.assertEqual(summary.replaced, {'deliveries': 2})
        deliveries = record_store.list_deliveries(self.db, company_id=self.company.id)
        self.assertEqual(sorted(d.invoice_number for d in deliveries), ['NF-60', 'NF-61'])
        self.assertEqual(len({d.id for d in deliveries}), 2)

    def test_restore_replaces_only_present_collections(self) -> None:
        content = {
            'deliveries': [
                {'invoiceNumber': 'NF-50', 'issueDate': '10/02/2024', 'status': 'Pending'},
                {'invoiceNumber': 'NF-51', 'issueDate': '2024-02-11'},
            ],
            'receivers': ['Bruno Lima', 'Bruno Lima', ' '],
        }
        summary = import_backup(self.db, company_id=self.company.id, content=content)

        self.assertEqual(summary.replaced, {'deliveries': 2, 'technicians': 1})
        deliveries = record_store.list_deliveries(self.db, company_id=self.company.id)
        self.assertEqual(sorted(d.invoice_number for d in deliveries), ['NF-50', 'NF-51'])
        self.assertTrue(all(d.admin_status == AdminStatus.OPEN for d in deliveries))
        self.assertEqual(len(record_store.list_pendencies(self.db, company_id=self.company.id)), 1)
        self.assertEqual([t.name for t in record_store.list_technicians(self.db, company_id=self.company.id)], ['Bruno Lima'])
        other = record_store.list_deliveries(self.db, company_id=self.other_company.id)
        self.assertEqual([d.invoice_number for d in other], ['OTHER-1'])

    def test_users_only_get_role_and_status_restored(self) -> None:
        content = {
            'users': [
                {'username': 'viewer', 'role': 'Editor', 'status': 'Blocked', 'email': 'changed@example.com'},
                {'username': 'stranger', 'role': 'Admin'},
            ]
        }
        summary = import_backup(self.db, company_id=self.company.id, content=content)

        self.assertEqual(summary.users_updated, 1)
        self.assertEqual(summary.users_skipped, ['stranger'])
        self.assertEqual(self.viewer.role, UserRole.EDITOR)
        self.assertEqual(self.viewer.status, UserStatus.BLOCKED)
        self.assertEqual(self.viewer.email, 'viewer@example.com')

    def test_invalid_file_changes_nothing(self) -> None:
        bad_documents = [
            b'{not json',
            b'[1, 2]',
            {'deliveries': 'nope'},
            {'deliveries': [{'invoiceNumber': 'NF-9', 'issueDate': '2024-01-01'}, {'invoiceNumber': ''}]},
            {'pendencies': [{'providerName': 'Acme', 'quantity': 0, 'date': '2024-01-01'}]},
            {'deliveries': [{'invoiceNumber': 'NF-9', 'issueDate': '2024-01-01', 'status': 'Lost'}]},
            {'technicians': [1, 2]},
        ]
        for content in bad_documents:
            with self.subTest(content=content):
                with self.assertRaises(ImportFormatError):
                    import_backup(self.db, company_id=self.company.id, content=content)

        deliveries = record_store.list_deliveries(self.db, company_id=self.company.id)
        self.assertEqual([d.invoice_number for d in deliveries], ['NF-1'])

    def test_filename(self) -> None:
        self.assertEqual(backup_filename(date(2024, 5, 1)), 'backup_almox_portal_2024-05-01.json')


if __name__ == '__main__':
    unittest.main()
