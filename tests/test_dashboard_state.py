from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.models import AdminStatus, DeliveryStatus, DemandPriority, DemandStatus, UserRole
from app.services import record_store
from app.services.dashboard_state import (
    REASON_NOT_FOUND,
    REASON_PERMISSION,
    REASON_STORAGE,
    REASON_VALIDATION,
    load_state,
)
from app.services.delivery_filters import DeliveryFilter
from app.services.record_store import DeliveryRecord, DemandRecord, PendencyRecord
from tests.db_support import add_company, add_user, make_engine, make_session_factory, principal_for


def _delivery(invoice: str = 'NF-1', **kwargs) -> DeliveryRecord:
    values = {'id': '', 'invoice_number': invoice, 'issue_date': date(2024, 1, 1)}
    values.update(kwargs)
    return DeliveryRecord(**values)


def _pendency(**kwargs) -> PendencyRecord:
    values = {
        'id': '',
        'provider_name': 'Acme',
        'reference_number': 'REF-1',
        'item_name': 'Cable',
        'quantity': 2,
        'reason': 'Missing',
        'created_on': date(2024, 1, 1),
    }
    values.update(kwargs)
    return PendencyRecord(**values)


def _demand(**kwargs) -> DemandRecord:
    values = {
        'id': '',
        'title': 'Store opening',
        'request_date': date(2024, 1, 1),
        'deadline': date(2024, 1, 10),
        'items': '[x] A\nB\nC',
    }
    values.update(kwargs)
    return DemandRecord(**values)


class DashboardStateTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session_factory(self.engine)()
        self.company = add_company(self.db)
        self.other_company = add_company(self.db, 'Other Co')
        self.admin = add_user(self.db, self.company, 'admin', role=UserRole.ADMIN)
        self.editor = add_user(self.db, self.company, 'editor', role=UserRole.EDITOR)
        self.viewer = add_user(self.db, self.company, 'viewer', role=UserRole.VIEWER)
        self.commercial = add_user(self.db, self.company, 'sales', role=UserRole.COMMERCIAL)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def state_for(self, user):
        return load_state(self.db, principal_for(user, self.company))


class DeliveryMutationTests(DashboardStateTestCase):
    def test_editor_creates_delivery_with_defaults(self) -> None:
        state = self.state_for(self.editor)
        result = state.save_delivery(_delivery('  NF-1  '))

        self.assertTrue(result.ok)
        self.assertEqual(result.record.invoice_number, 'NF-1')
        self.assertEqual(result.record.status, DeliveryStatus.PENDING)
        self.assertEqual(result.record.admin_status, AdminStatus.OPEN)
        self.assertEqual(state.deliveries, [result.record])
        stored = record_store.list_deliveries(self.db, company_id=self.company.id)
        self.assertEqual([r.id for r in stored], [result.record.id])

    def test_required_fields(self) -> None:
        state = self.state_for(self.editor)
        self.assertEqual(state.save_delivery(_delivery('  ')).reason, REASON_VALIDATION)
        self.assertEqual(state.save_delivery(_delivery(issue_date=None)).reason, REASON_VALIDATION)
        delivered = state.save_delivery(_delivery(status=DeliveryStatus.DELIVERED, receiver_name=' '))
        self.assertFalse(delivered.ok)
        self.assertIn('Receiver name', delivered.error)
        self.assertEqual(state.deliveries, [])

    def test_viewer_cannot_mutate(self) -> None:
        created = self.state_for(self.admin).save_delivery(_delivery()).record
        self.db.commit()

        state = self.state_for(self.viewer)
        self.assertEqual(state.save_delivery(_delivery('NF-2')).reason, REASON_PERMISSION)
        self.assertEqual(state.patch_delivery(created.id, 'observations', 'hi').reason, REASON_PERMISSION)
        self.assertEqual(state.delete_delivery(created.id).reason, REASON_PERMISSION)
        self.assertEqual(state.add_pendency(_pendency()).reason, REASON_PERMISSION)
        self.assertEqual(state.add_demand(_demand()).reason, REASON_PERMISSION)

    def test_unchanged_writes_still_require_edit_rights(self) -> None:
        created = self.state_for(self.admin).save_delivery(_delivery()).record
        self.db.commit()

        state = self.state_for(self.viewer)
        self.assertEqual(state.save_delivery(created).reason, REASON_PERMISSION)
        self.assertEqual(state.patch_delivery(created.id, 'status', DeliveryStatus.PENDING).reason, REASON_PERMISSION)
        bulk = state.bulk_update_status([created.id], DeliveryStatus.PENDING)
        self.assertEqual(bulk.succeeded, 0)
        self.assertEqual(bulk.failed, 1)

    def test_editor_cannot_resave_closed_record_unchanged(self) -> None:
        closed = self.state_for(self.admin).save_delivery(_delivery(admin_status=AdminStatus.FULFILLED)).record
        self.db.commit()

        result = self.state_for(self.editor).save_delivery(closed)
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, REASON_PERMISSION)
        self.assertIn('closed', result.error)

    def test_base_fields_are_frozen_after_save(self) -> None:
        state = self.state_for(self.admin)
        created = state.save_delivery(_delivery()).record

        result = state.save_delivery(_delivery('NF-999', id=created.id))
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, REASON_PERMISSION)
        self.assertEqual(state.find_delivery(created.id).invoice_number, 'NF-1')

    def test_editor_blocked_once_admin_status_is_closed(self) -> None:
        admin_state = self.state_for(self.admin)
        created = admin_state.save_delivery(_delivery()).record
        self.assertTrue(admin_state.patch_delivery(created.id, 'admin_status', 'Fulfilled').ok)
        self.db.commit()

        editor_state = self.state_for(self.editor)
        result = editor_state.patch_delivery(created.id, 'observations', 'late note')
        self.assertFalse(result.ok)
        self.assertEqual(result.reason, REASON_PERMISSION)
        self.assertIn('closed', result.error)

        # Administrators keep editing closed records.
        admin_state = self.state_for(self.admin)
        self.assertTrue(admin_state.patch_delivery(created.id, 'observations', 'late note').ok)

    def test_editor_cannot_change_admin_status(self) -> None:
        state = self.state_for(self.editor)
        created = state.save_delivery(_delivery()).record
        result = state.patch_delivery(created.id, 'admin_status', AdminStatus.CANCELED)
        self.assertEqual(result.reason, REASON_PERMISSION)
        denied = state.save_delivery(_delivery('NF-2', admin_status=AdminStatus.FULFILLED))
        self.assertEqual(denied.reason, REASON_PERMISSION)

    def test_patch_validates_field_and_value(self) -> None:
        state = self.state_for(self.editor)
        created = state.save_delivery(_delivery()).record
        self.assertEqual(state.patch_delivery('missing', 'status', 'Delivered').reason, REASON_NOT_FOUND)
        self.assertEqual(state.patch_delivery(created.id, 'invoice_number', 'X').reason, REASON_VALIDATION)
        self.assertEqual(state.patch_delivery(created.id, 'status', 'Lost').reason, REASON_VALIDATION)
        self.assertEqual(state.patch_delivery(created.id, 'delivery_date', 'soon').reason, REASON_VALIDATION)

        result = state.patch_delivery(created.id, 'delivery_date', '05/01/2024')
        self.assertTrue(result.ok)
        self.assertEqual(result.record.delivery_date, date(2024, 1, 5))

    def test_delete_is_admin_only(self) -> None:
        created = self.state_for(self.editor).save_delivery(_delivery()).record
        self.assertEqual(self.state_for(self.editor).delete_delivery(created.id).reason, REASON_PERMISSION)

        state = self.state_for(self.admin)
        self.assertTrue(state.delete_delivery(created.id).ok)
        self.assertEqual(state.deliveries, [])
        self.assertEqual(state.delete_delivery(created.id).reason, REASON_NOT_FOUND)

    def test_storage_failure_reverts_in_memory_change(self) -> None:
        state = self.state_for(self.editor)
        created = state.save_delivery(_delivery()).record

        failure = OperationalError('UPDATE deliveries', {}, Exception('database is locked'))
        with patch('app.services.dashboard_state.record_store.update_delivery', side_effect=failure):
            result = state.patch_delivery(created.id, 'observations', 'never saved')

        self.assertFalse(result.ok)
        self.assertEqual(result.reason, REASON_STORAGE)
        self.assertIsNone(state.find_delivery(created.id).observations)

    def test_failed_create_removes_optimistic_record(self) -> None:
        state = self.state_for(self.editor)
        failure = OperationalError('INSERT INTO deliveries', {}, Exception('disk full'))
        with patch('app.services.dashboard_state.record_store.create_delivery', side_effect=failure):
            result = state.save_delivery(_delivery())
        self.assertEqual(result.reason, REASON_STORAGE)
        self.assertEqual(state.deliveries, [])

    def test_record_removed_elsewhere_reports_not_found(self) -> None:
        state = self.state_for(self.editor)
        created = state.save_delivery(_delivery()).record
        record_store.delete_delivery(self.db, delivery_id=created.id, company_id=self.company.id)

        result = state.patch_delivery(created.id, 'observations', 'stale')
        self.assertEqual(result.reason, REASON_NOT_FOUND)
        self.assertIsNone(state.find_delivery(created.id).observations)

    def test_bulk_status_reports_each_record(self) -> None:
        admin_state = self.state_for(self.admin)
        open_record = admin_state.save_delivery(_delivery('NF-1')).record
        closed_record = admin_state.save_delivery(_delivery('NF-2', admin_status=AdminStatus.CANCELED)).record
        self.db.commit()

        state = self.state_for(self.editor)
        result = state.bulk_update_status([open_record.id, closed_record.id, 'missing', open_record.id], DeliveryStatus.NOT_RETRIEVED)

        self.assertEqual(len(result.outcomes), 3)
        self.assertEqual(result.succeeded, 1)
        self.assertEqual(result.failed, 2)
        self.assertFalse(result.ok)
        self.assertEqual(state.find_delivery(open_record.id).status, DeliveryStatus.NOT_RETRIEVED)
        self.assertEqual(state.find_delivery(closed_record.id).status, DeliveryStatus.PENDING)

    def test_import_requires_admin(self) -> None:
        records = [_delivery('NF-1'), _delivery('NF-2')]
        denied = self.state_for(self.editor).import_deliveries(records)
        self.assertIsNotNone(denied.error)
        self.assertEqual(denied.outcomes, [])

        state = self.state_for(self.admin)
        result = state.import_deliveries(records)
        self.assertTrue(result.ok)
        self.assertEqual(result.succeeded, 2)
        self.assertEqual(len(record_store.list_deliveries(self.db, company_id=self.company.id)), 2)

    def test_filters_reset_page(self) -> None:
        state = self.state_for(self.admin)
        state.import_deliveries([_delivery(f'NF-{idx}') for idx in range(1, 8)])
        state.page_size = 3
        state.set_page(3)
        self.assertEqual(len(state.visible_page().items), 1)

        state.set_filters(DeliveryFilter(invoice_number='nf-1'))
        self.assertEqual(state.page, 1)
        self.assertEqual([r.invoice_number for r in state.visible_page().items], ['NF-1'])

        state.set_page(9)
        self.assertEqual(state.visible_page().items, [])

    def test_tenants_are_isolated(self) -> None:
        self.state_for(self.admin).save_delivery(_delivery())
        outsider = add_user(self.db, self.other_company, 'outsider', role=UserRole.ADMIN)
        state = load_state(self.db, principal_for(outsider, self.other_company))
        self.assertEqual(state.deliveries, [])


class PendencyMutationTests(DashboardStateTestCase):
    def test_add_and_resolve(self) -> None:
        state = self.state_for(self.editor)
        created = state.add_pendency(_pendency(provider_name='  Acme  '))
        self.assertTrue(created.ok)
        self.assertEqual(created.record.provider_name, 'Acme')
        self.assertFalse(created.record.resolved)

        updated = state.update_pendency(created.record.id, expected_resolution_date=date(2024, 1, 20))
        self.assertEqual(updated.record.expected_resolution_date, date(2024, 1, 20))

        resolved = state.resolve_pendency(created.record.id)
        self.assertTrue(resolved.record.resolved)

        again = state.update_pendency(created.record.id, expected_resolution_date=None)
        self.assertEqual(again.reason, REASON_VALIDATION)

    def test_validation(self) -> None:
        state = self.state_for(self.editor)
        self.assertEqual(state.add_pendency(_pendency(reason=' ')).reason, REASON_VALIDATION)
        self.assertEqual(state.add_pendency(_pendency(quantity=0)).reason, REASON_VALIDATION)
        self.assertEqual(state.resolve_pendency('missing').reason, REASON_NOT_FOUND)

    def test_commercial_cannot_touch_pendencies(self) -> None:
        self.assertEqual(self.state_for(self.commercial).add_pendency(_pendency()).reason, REASON_PERMISSION)

    def test_delete(self) -> None:
        state = self.state_for(self.editor)
        created = state.add_pendency(_pendency()).record
        self.assertTrue(state.delete_pendency(created.id).ok)
        self.assertEqual(record_store.list_pendencies(self.db, company_id=self.company.id), [])


class DemandMutationTests(DashboardStateTestCase):
    def test_title_falls_back_to_client(self) -> None:
        state = self.state_for(self.commercial)
        result = state.add_demand(_demand(title='', client_name='Initech'))
        self.assertTrue(result.ok)
        self.assertEqual(result.record.title, 'Initech')
        self.assertEqual(state.add_demand(_demand(title='', client_name=None)).reason, REASON_VALIDATION)

    def test_toggle_item_persists(self) -> None:
        state = self.state_for(self.commercial)
        created = state.add_demand(_demand()).record
        toggled = state.toggle_demand_item(created.id, 1)
        self.assertTrue(toggled.ok)
        self.assertEqual(toggled.record.items, '[x] A\n[x] B\nC')
        stored = record_store.list_demands(self.db, company_id=self.company.id)[0]
        self.assertEqual(stored.items, '[x] A\n[x] B\nC')
        self.assertEqual(state.toggle_demand_item(created.id, 7).reason, REASON_VALIDATION)

    def test_complete_and_reopen(self) -> None:
        state = self.state_for(self.commercial)
        created = state.add_demand(_demand(priority=DemandPriority.URGENT)).record

        completed = state.complete_demand(created.id, date(2024, 1, 9))
        self.assertEqual(completed.record.status, DemandStatus.COMPLETED)
        self.assertEqual(completed.record.completion_date, date(2024, 1, 9))

        reopened = state.set_demand_status(created.id, DemandStatus.IN_PROGRESS)
        self.assertEqual(reopened.record.status, DemandStatus.IN_PROGRESS)
        self.assertIsNone(reopened.record.completion_date)

    def test_new_demands_always_start_pending(self) -> None:
        state = self.state_for(self.commercial)
        result = state.add_demand(_demand(status=DemandStatus.COMPLETED, completion_date=date(2024, 1, 3)))
        self.assertTrue(result.ok)
        self.assertEqual(result.record.status, DemandStatus.PENDING)
        self.assertIsNone(result.record.completion_date)

    def test_form_update_keeps_status_and_completion_date(self) -> None:
        state = self.state_for(self.commercial)
        created = state.add_demand(_demand()).record

        updated = state.update_demand(
            _demand(id=created.id, title='Renamed', status=DemandStatus.COMPLETED, completion_date=date(2024, 1, 3))
        )
        self.assertEqual(updated.record.status, DemandStatus.PENDING)
        self.assertIsNone(updated.record.completion_date)

        state.complete_demand(created.id, date(2024, 1, 9))
        reedited = state.update_demand(_demand(id=created.id, title='Again', status=DemandStatus.PENDING))
        self.assertEqual(reedited.record.status, DemandStatus.COMPLETED)
        self.assertEqual(reedited.record.completion_date, date(2024, 1, 9))
        stored = record_store.list_demands(self.db, company_id=self.company.id)[0]
        self.assertEqual(stored.status, DemandStatus.COMPLETED)

    def test_update_and_delete(self) -> None:
        state = self.state_for(self.commercial)
        created = state.add_demand(_demand()).record
        updated = state.update_demand(_demand(id=created.id, title='Renamed'))
        self.assertEqual(updated.record.title, 'Renamed')
        self.assertEqual(state.update_demand(_demand(id='missing')).reason, REASON_NOT_FOUND)
        self.assertTrue(state.delete_demand(created.id).ok)
        self.assertEqual(state.demands, [])

    def test_viewer_cannot_toggle_items(self) -> None:
        self.assertEqual(self.state_for(self.viewer).toggle_demand_item('x', 0).reason, REASON_PERMISSION)


if __name__ == '__main__':
    unittest.main()
