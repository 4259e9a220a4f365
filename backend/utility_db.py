import logging
from collections import defaultdict

import numpy as np
import pandas as pd

log = logging.getLogger(__name__)


def tidset_dari_posisi(posisi, ukuran):
    # Bangun TidSet (bit vector) dari daftar posisi transaksi dalam satu lintasan
    flags = np.zeros(ukuran, dtype=bool)
    flags[posisi] = True
    return int.from_bytes(np.packbits(flags, bitorder='little').tobytes(), 'little')


def bit_positions(bits):
    """Posisi bit aktif pada bit vector panjang, urut dari kecil ke besar.

    Dipakai untuk TidSet: seluruh integer dibaca sekali, bukan sekali per bit.
    """
    if not bits:
        return np.empty(0, dtype=np.intp)
    raw = np.frombuffer(bits.to_bytes((bits.bit_length() + 7) // 8, 'little'), dtype=np.uint8)
    return np.flatnonzero(np.unpackbits(raw, bitorder='little'))


class Item:
    def __init__(self, name, twu, total_util):
        self.name = name              # Nama baru (1..N), urut utilitas menurun
        self.tids = 0                 # TidSet sebagai bit vector
        self.twu = twu                # Transaction Weighted Utility
        self.total_util = total_util  # Utilitas total item
        self.max_util = 0             # Utilitas maksimum dalam satu transaksi
        self.avg_util = 0             # Utilitas rata-rata (+1)

    def __repr__(self):
        return f"Item({self.name})"


class UtilityDatabase:
    def __init__(self, k, kolom_id_transaksi='ID_PENJUALAN', kolom_id_item='KODE_BARANG', kolom_utilitas='UTILITY'):
        self.k = k
        self.kolom_id_transaksi = kolom_id_transaksi
        self.kolom_id_item = kolom_id_item
        self.kolom_utilitas = kolom_utilitas
        self.transaksi = []  # (items, utilitas, utilitas transaksi) sebelum pruning
        self.items_twu = defaultdict(int)
        self.items_util = defaultdict(int)
        self.min_util = 0
        self.items = []       # HTWUI, index = nama - 1
        self.database = []    # transaksi setelah pruning dan rename
        self.max_transaction_length = 0
        self.nama_baru = {}   # id asli -> nama baru
        self.nama_asli = {}   # nama baru -> id asli

    def muat_data(self, data_transaksi):
        kolom = [self.kolom_id_transaksi, self.kolom_id_item, self.kolom_utilitas]
        hilang = [k for k in kolom if k not in data_transaksi.columns]
        if hilang:
            raise ValueError(f"Data harus memiliki kolom: {kolom}. Kolom yang hilang: {hilang}")

        utilitas = pd.to_numeric(data_transaksi[self.kolom_utilitas], errors='coerce')
        if utilitas.isna().any():
            raise ValueError(f"Kolom {self.kolom_utilitas} berisi nilai non-numerik")

        # Item yang sama dalam satu transaksi digabung (utilitasnya dijumlahkan)
        transaksi_dict = defaultdict(dict)
        for tid, item, util in zip(data_transaksi[self.kolom_id_transaksi].tolist(),
                                   data_transaksi[self.kolom_id_item].tolist(),
                                   utilitas.tolist()):
            items = transaksi_dict[tid]
            items[item] = items.get(item, 0) + util

        for items in transaksi_dict.values():
            self.transaksi.append((list(items.keys()), list(items.values()), sum(items.values())))
        log.info("Data transaksi dimuat: %d transaksi", len(self.transaksi))
        return self

    def muat_transaksi(self, rows):
        for items, utilities, transaction_utility in rows:
            if len(items) != len(utilities):
                raise ValueError(f"Jumlah item ({len(items)}) dan utilitas ({len(utilities)}) tidak sama")
            self.transaksi.append((list(items), list(utilities), transaction_utility))
        log.info("Data transaksi dimuat: %d transaksi", len(self.transaksi))
        return self

    def hitung_TWU(self):
        # Scan pertama: TWU dan utilitas total setiap item
        for items, utilities, transaction_utility in self.transaksi:
            for item, util in zip(items, utilities):
                self.items_twu[item] += transaction_utility
                self.items_util[item] += util

    def tentukan_min_util(self):
        # min_util = utilitas 1-itemset terbesar ke-k
        utils = sorted(self.items_util.values(), reverse=True)
        self.min_util = utils[self.k - 1] if self.k <= len(utils) else 0
        log.info("minUtil: %s", self.min_util)
        return self.min_util

    def prune_items_by_twu(self):
        # Item dengan utilitas tinggi mendapat nama kecil, sehingga item yang menjanjikan
        # berada di awal transaksi dan di awal bit vector
        urut = sorted(self.items_util.items(), key=lambda x: x[1], reverse=True)
        for item, util in urut:
            twu = self.items_twu[item]
            if twu >= self.min_util:
                name = len(self.items) + 1
                self.nama_baru[item] = name
                self.nama_asli[name] = item
                self.items.append(Item(name, twu, util))
        return self.items

    def bangun_database(self):
        # Scan kedua: buang item non-HTWUI, rename, dan urutkan transaksi
        posisi = [[] for _ in self.items]
        tid = 0
        for items, utilities, _ in self.transaksi:
            transaction = []
            for item, util in zip(items, utilities):
                name = self.nama_baru.get(item)
                if name is None:
                    continue
                transaction.append((name, util))
                item_obj = self.items[name - 1]
                posisi[name - 1].append(tid)
                item_obj.max_util = max(item_obj.max_util, util)
            if transaction:
                transaction.sort()
                self.max_transaction_length = max(self.max_transaction_length, len(transaction))
                self.database.append(tuple(transaction))
                tid += 1

        for item, tids in zip(self.items, posisi):
            item.tids = tidset_dari_posisi(tids, tid)
            item.avg_util = 1 + item.total_util // item.tids.bit_count()

    def siapkan(self):
        self.hitung_TWU()
        self.tentukan_min_util()
        self.prune_items_by_twu()
        self.bangun_database()
        log.info("HTWUI_SIZE: %d", len(self.items))
        return self

    @property
    def twu_per_item(self):
        return dict(self.items_twu)
